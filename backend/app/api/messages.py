"""FastAPI routes for individual messages and role-pair direct threads."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_profile, path_ref
from app.domain.messaging import schemas
from app.domain.messaging.direct import DirectMessageService
from app.domain.messaging.service import ConversationService
from app.domain.profiles import ResolvedProfile

router = APIRouter(prefix="/messages", tags=["messages"])

_conversations = ConversationService()
_direct = DirectMessageService()


@router.post("/direct", response_model=schemas.MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_direct_endpoint(
	payload: schemas.DirectMessageRequest,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageResponse:
	message = await _direct.send_direct(
		profile,
		payload.receiver(),
		payload.content,
		message_type=payload.message_type,
		priority=payload.priority,
		reply_to=payload.reply_to,
	)
	return schemas.MessageResponse.from_model(message)


@router.get("/direct/{role}/{profile_id}", response_model=schemas.MessageListResponse)
async def list_thread_endpoint(
	role: str,
	profile_id: str,
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=50, ge=1, le=100),
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageListResponse:
	result = await _direct.list_thread(profile, path_ref(role, profile_id), page=page, limit=limit)
	return schemas.MessageListResponse(
		items=[schemas.MessageResponse.from_model(item) for item in result.items],
		page=result.page,
		limit=result.limit,
		has_more=result.has_more,
	)


@router.post("/direct/{role}/{profile_id}/seen", response_model=schemas.SeenResponse)
async def mark_thread_seen_endpoint(
	role: str,
	profile_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.SeenResponse:
	updated = await _direct.mark_thread_seen(profile, path_ref(role, profile_id))
	return schemas.SeenResponse(updated_count=updated)


@router.get("/inbox/summary", response_model=schemas.InboxSummaryResponse)
async def inbox_summary_endpoint(
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.InboxSummaryResponse:
	summary = await _direct.inbox_summary(profile)
	return schemas.InboxSummaryResponse.from_model(summary)


@router.get("/pending-approval", response_model=schemas.MessageListResponse)
async def pending_approval_endpoint(
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=50, ge=1, le=100),
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageListResponse:
	result = await _direct.pending_approvals(profile, page=page, limit=limit)
	return schemas.MessageListResponse(
		items=[schemas.MessageResponse.from_model(item) for item in result.items],
		page=result.page,
		limit=result.limit,
		has_more=result.has_more,
	)


@router.post("/{message_id}/read", response_model=schemas.MessageResponse)
async def mark_read_endpoint(
	message_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageResponse:
	message = await _conversations.mark_as_read(message_id, profile)
	return schemas.MessageResponse.from_model(message)


@router.post("/{message_id}/archive", response_model=schemas.MessageResponse)
async def archive_endpoint(
	message_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageResponse:
	message = await _conversations.archive_message(message_id, profile)
	return schemas.MessageResponse.from_model(message)


@router.post("/{message_id}/approve", response_model=schemas.MessageResponse)
async def approve_endpoint(
	message_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> schemas.MessageResponse:
	message = await _direct.approve_message(message_id, profile)
	return schemas.MessageResponse.from_model(message)
