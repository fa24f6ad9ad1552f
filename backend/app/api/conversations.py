"""FastAPI routes for conversations."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_current_profile, path_ref
from app.domain.messaging import schemas
from app.domain.messaging.service import ConversationService
from app.domain.profiles import ResolvedProfile

router = APIRouter(prefix="/conversations", tags=["conversations"])

_service = ConversationService()


@router.post("", response_model=schemas.ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation_endpoint(
	payload: schemas.CreateConversationRequest,
	response: Response,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.ConversationResponse:
	conversation, created = await _service.create_conversation(
		profile,
		[item.to_ref() for item in payload.participants],
		conversation_type=payload.conversation_type,
		title=payload.title,
		description=payload.description,
	)
	if not created:
		response.status_code = status.HTTP_200_OK
	return schemas.ConversationResponse.from_model(conversation, created=created)


@router.get("", response_model=schemas.ConversationListResponse)
async def list_conversations_endpoint(
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=20, ge=1, le=100),
	conversation_type: Optional[str] = Query(default=None, pattern="^(direct|group|support|announcement)$"),
	include_archived: bool = Query(default=False),
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.ConversationListResponse:
	items, total = await _service.list_conversations(
		profile,
		page=page,
		limit=limit,
		conversation_type=conversation_type,
		include_archived=include_archived,
	)
	return schemas.ConversationListResponse(
		items=[schemas.ConversationResponse.from_model(item) for item in items],
		total=total,
		page=page,
		limit=limit,
	)


@router.get("/{conversation_id}", response_model=schemas.ConversationResponse)
async def get_conversation_endpoint(
	conversation_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.ConversationResponse:
	view = await _service.get_conversation(conversation_id, profile)
	return schemas.ConversationResponse.from_model(view.conversation, profiles=view.profiles)


@router.post(
	"/{conversation_id}/messages",
	response_model=schemas.MessageResponse,
	status_code=status.HTTP_201_CREATED,
)
async def send_message_endpoint(
	conversation_id: str,
	payload: schemas.SendMessageRequest,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageResponse:
	message = await _service.send_message(
		conversation_id,
		profile,
		payload.content,
		message_type=payload.message_type,
		priority=payload.priority,
		reply_to=payload.reply_to,
	)
	return schemas.MessageResponse.from_model(message)


@router.get("/{conversation_id}/messages", response_model=schemas.MessageListResponse)
async def list_messages_endpoint(
	conversation_id: str,
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=50, ge=1, le=100),
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageListResponse:
	result = await _service.list_conversation_messages(conversation_id, profile, page=page, limit=limit)
	return schemas.MessageListResponse(
		items=[schemas.MessageResponse.from_model(item) for item in result.items],
		page=result.page,
		limit=result.limit,
		has_more=result.has_more,
	)


@router.post("/{conversation_id}/seen", response_model=schemas.SeenResponse)
async def mark_seen_endpoint(
	conversation_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.SeenResponse:
	updated = await _service.mark_conversation_seen(conversation_id, profile)
	return schemas.SeenResponse(updated_count=updated)


@router.post("/{conversation_id}/participants", response_model=schemas.ConversationResponse)
async def add_participant_endpoint(
	conversation_id: str,
	payload: schemas.ParticipantRef,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.ConversationResponse:
	conversation = await _service.add_participant(conversation_id, profile, payload.to_ref())
	return schemas.ConversationResponse.from_model(conversation)


@router.delete("/{conversation_id}/participants/{role}/{profile_id}", response_model=schemas.ConversationResponse)
async def remove_participant_endpoint(
	conversation_id: str,
	role: str,
	profile_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.ConversationResponse:
	conversation = await _service.remove_participant(conversation_id, profile, path_ref(role, profile_id))
	return schemas.ConversationResponse.from_model(conversation)
