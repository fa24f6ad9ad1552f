"""Pydantic schemas for the messaging API."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import Conversation, InboxSummary, Message
from app.domain.profiles.models import ProfileRef, ResolvedProfile, Role, parse_role

_MESSAGE_TYPE_PATTERN = "^(text|file|image|system|announcement)$"
_PRIORITY_PATTERN = "^(low|normal|high|urgent)$"


class ParticipantRef(BaseModel):
	profile_id: str = Field(..., min_length=1, max_length=64)
	role: Role

	@field_validator("role", mode="before")
	@classmethod
	def _parse_role(cls, value: object) -> Role:
		return parse_role(value)

	def to_ref(self) -> ProfileRef:
		return ProfileRef(self.role, self.profile_id)


class CreateConversationRequest(BaseModel):
	participants: List[ParticipantRef] = Field(..., min_length=1, max_length=50)
	conversation_type: str = Field(default="direct", pattern="^(direct|group|support|announcement)$")
	title: Optional[str] = Field(default=None, max_length=200)
	description: Optional[str] = Field(default=None, max_length=1000)


class SendMessageRequest(BaseModel):
	content: str = Field(..., min_length=1, max_length=5000)
	message_type: str = Field(default="text", pattern=_MESSAGE_TYPE_PATTERN)
	priority: str = Field(default="normal", pattern=_PRIORITY_PATTERN)
	reply_to: Optional[str] = None


class DirectMessageRequest(SendMessageRequest):
	receiver_id: str = Field(..., min_length=1, max_length=64)
	receiver_role: Role

	@field_validator("receiver_role", mode="before")
	@classmethod
	def _parse_role(cls, value: object) -> Role:
		return parse_role(value)

	def receiver(self) -> ProfileRef:
		return ProfileRef(self.receiver_role, self.receiver_id)


class ParticipantResponse(BaseModel):
	profile_id: str
	role: str
	joined_at: datetime
	is_active: bool
	last_seen_at: Optional[datetime] = None
	display_name: Optional[str] = None
	email: Optional[str] = None


class ConversationResponse(BaseModel):
	conversation_id: str
	conversation_type: str
	title: Optional[str] = None
	description: Optional[str] = None
	status: str
	participants: List[ParticipantResponse]
	settings: Dict[str, bool]
	last_message_at: Optional[datetime] = None
	last_message_id: Optional[str] = None
	message_count: int
	created_at: datetime
	updated_at: datetime
	created: Optional[bool] = None

	@classmethod
	def from_model(
		cls,
		conversation: Conversation,
		*,
		profiles: Optional[Dict[ProfileRef, ResolvedProfile]] = None,
		created: Optional[bool] = None,
	) -> "ConversationResponse":
		profiles = profiles or {}
		participants = []
		for participant in conversation.participants:
			profile = profiles.get(participant.ref)
			participants.append(
				ParticipantResponse(
					profile_id=participant.profile_id,
					role=participant.role.value,
					joined_at=participant.joined_at,
					is_active=participant.is_active,
					last_seen_at=participant.last_seen_at,
					display_name=profile.display_name if profile else None,
					email=profile.email if profile else None,
				)
			)
		return cls(
			conversation_id=conversation.conversation_id,
			conversation_type=conversation.conversation_type,
			title=conversation.title,
			description=conversation.description,
			status=conversation.status,
			participants=participants,
			settings=conversation.settings.to_dict(),
			last_message_at=conversation.last_message_at,
			last_message_id=conversation.last_message_id,
			message_count=conversation.message_count,
			created_at=conversation.created_at,
			updated_at=conversation.updated_at,
			created=created,
		)


class ConversationListResponse(BaseModel):
	items: List[ConversationResponse]
	total: int
	page: int
	limit: int


class SenderResponse(BaseModel):
	profile_id: str
	role: str
	name: str
	email: str


class ReadReceiptResponse(BaseModel):
	profile_id: str
	role: str
	read_at: datetime


class MessageResponse(BaseModel):
	message_id: str
	conversation_id: str
	sender: SenderResponse
	receiver_id: str
	receiver_role: str
	content: str
	message_type: str
	priority: str
	status: str
	is_read: bool
	read_by: List[ReadReceiptResponse]
	is_archived: bool
	archived_at: Optional[datetime] = None
	reply_to: Optional[str] = None
	is_reply: bool
	requires_approval: bool
	is_approved: bool
	approved_by: Optional[str] = None
	approved_at: Optional[datetime] = None
	created_at: datetime

	@classmethod
	def from_model(cls, message: Message) -> "MessageResponse":
		return cls(
			message_id=message.message_id,
			conversation_id=message.conversation_id,
			sender=SenderResponse(
				profile_id=message.sender.profile_id,
				role=message.sender.role.value,
				name=message.sender.name,
				email=message.sender.email,
			),
			receiver_id=message.receiver_id,
			receiver_role=message.receiver_role.value,
			content=message.content,
			message_type=message.message_type,
			priority=message.priority,
			status=message.status,
			is_read=message.is_read,
			read_by=[
				ReadReceiptResponse(profile_id=receipt.profile_id, role=receipt.role.value, read_at=receipt.read_at)
				for receipt in message.read_by
			],
			is_archived=message.is_archived,
			archived_at=message.archived_at,
			reply_to=message.reply_to,
			is_reply=message.is_reply,
			requires_approval=message.requires_approval,
			is_approved=message.is_approved,
			approved_by=message.approved_by,
			approved_at=message.approved_at,
			created_at=message.created_at,
		)


class MessageListResponse(BaseModel):
	items: List[MessageResponse]
	page: int
	limit: int
	has_more: bool


class SeenResponse(BaseModel):
	updated_count: int


class InboxSummaryResponse(BaseModel):
	total: int
	unread: int
	sent: int
	received: int
	urgent: int
	awaiting_approval: int
	approved: int

	@classmethod
	def from_model(cls, summary: InboxSummary) -> "InboxSummaryResponse":
		return cls(**summary.to_dict())
