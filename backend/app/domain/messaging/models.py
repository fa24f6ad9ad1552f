"""Domain models for conversations and messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from app.domain.messaging.keys import derive_conversation_key
from app.domain.profiles.models import ProfileRef, ResolvedProfile, Role

CONVERSATION_TYPES = ("direct", "group", "support", "announcement")
CONVERSATION_STATUSES = ("active", "archived", "deleted")
MESSAGE_TYPES = ("text", "file", "image", "system", "announcement")
MESSAGE_PRIORITIES = ("low", "normal", "high", "urgent")
MESSAGE_STATUSES = ("sent", "delivered", "read")


def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value else None


@dataclass(slots=True)
class Participant:
	profile_id: str
	role: Role
	joined_at: datetime
	is_active: bool = True
	last_seen_at: Optional[datetime] = None

	@property
	def ref(self) -> ProfileRef:
		return ProfileRef(self.role, self.profile_id)

	def to_dict(self) -> dict:
		return {
			"profile_id": self.profile_id,
			"role": self.role.value,
			"joined_at": self.joined_at.isoformat(),
			"is_active": self.is_active,
			"last_seen_at": _iso(self.last_seen_at),
		}


@dataclass(slots=True)
class ConversationSettings:
	allow_new_participants: bool = False
	require_approval: bool = False
	is_archived: bool = False
	is_pinned: bool = False
	mute_notifications: bool = False

	def to_dict(self) -> dict:
		return {
			"allow_new_participants": self.allow_new_participants,
			"require_approval": self.require_approval,
			"is_archived": self.is_archived,
			"is_pinned": self.is_pinned,
			"mute_notifications": self.mute_notifications,
		}

	@classmethod
	def from_dict(cls, data: Optional[dict]) -> "ConversationSettings":
		data = data or {}
		return cls(
			allow_new_participants=bool(data.get("allow_new_participants", False)),
			require_approval=bool(data.get("require_approval", False)),
			is_archived=bool(data.get("is_archived", False)),
			is_pinned=bool(data.get("is_pinned", False)),
			mute_notifications=bool(data.get("mute_notifications", False)),
		)


@dataclass(slots=True)
class Conversation:
	conversation_id: str
	participants: List[Participant]
	conversation_type: str
	created_at: datetime
	updated_at: datetime
	title: Optional[str] = None
	description: Optional[str] = None
	settings: ConversationSettings = field(default_factory=ConversationSettings)
	status: str = "active"
	last_message_at: Optional[datetime] = None
	last_message_id: Optional[str] = None
	message_count: int = 0

	@property
	def is_direct(self) -> bool:
		return self.conversation_type == "direct"

	@property
	def direct_key(self) -> Optional[str]:
		"""Uniqueness key for active direct conversations (unordered pair)."""
		if not self.is_direct or len(self.participants) != 2:
			return None
		one, two = self.participants
		return derive_conversation_key(one.ref, two.ref)

	def participant(self, ref: ProfileRef) -> Optional[Participant]:
		for participant in self.participants:
			if participant.ref == ref:
				return participant
		return None

	def is_active_participant(self, ref: ProfileRef) -> bool:
		participant = self.participant(ref)
		return participant is not None and participant.is_active

	def active_participants(self) -> List[Participant]:
		return [participant for participant in self.participants if participant.is_active]

	def other_active_participants(self, ref: ProfileRef) -> List[Participant]:
		return [participant for participant in self.active_participants() if participant.ref != ref]

	def add_participant(self, ref: ProfileRef, now: datetime) -> Participant:
		"""Add ``ref`` or reactivate its existing entry; never duplicates."""
		existing = self.participant(ref)
		if existing is not None:
			existing.is_active = True
			return existing
		participant = Participant(profile_id=ref.profile_id, role=ref.role, joined_at=now)
		self.participants.append(participant)
		return participant

	def deactivate_participant(self, ref: ProfileRef) -> bool:
		participant = self.participant(ref)
		if participant is None or not participant.is_active:
			return False
		participant.is_active = False
		return True

	def touch_last_seen(self, ref: ProfileRef, now: datetime) -> None:
		participant = self.participant(ref)
		if participant is not None:
			participant.last_seen_at = now

	def record_message(self, message: "Message") -> None:
		self.last_message_at = message.created_at
		self.last_message_id = message.message_id
		self.message_count += 1
		self.updated_at = message.created_at

	def to_dict(self) -> dict:
		return {
			"conversation_id": self.conversation_id,
			"participants": [participant.to_dict() for participant in self.participants],
			"title": self.title,
			"description": self.description,
			"conversation_type": self.conversation_type,
			"settings": self.settings.to_dict(),
			"status": self.status,
			"last_message_at": _iso(self.last_message_at),
			"last_message_id": self.last_message_id,
			"message_count": self.message_count,
			"created_at": self.created_at.isoformat(),
			"updated_at": self.updated_at.isoformat(),
		}


@dataclass(frozen=True, slots=True)
class SenderSnapshot:
	"""Sender identity captured at send time; never re-resolved."""

	profile_id: str
	role: Role
	name: str
	email: str

	@classmethod
	def from_profile(cls, profile: ResolvedProfile) -> "SenderSnapshot":
		if profile.role is None:
			raise ValueError("cannot snapshot an unresolved profile")
		return cls(
			profile_id=profile.profile_id,
			role=profile.role,
			name=profile.display_name,
			email=profile.email,
		)

	@property
	def ref(self) -> ProfileRef:
		return ProfileRef(self.role, self.profile_id)

	def to_dict(self) -> dict:
		return {
			"profile_id": self.profile_id,
			"role": self.role.value,
			"name": self.name,
			"email": self.email,
		}


@dataclass(frozen=True, slots=True)
class ReadReceipt:
	profile_id: str
	role: Role
	read_at: datetime

	@property
	def ref(self) -> ProfileRef:
		return ProfileRef(self.role, self.profile_id)

	def to_dict(self) -> dict:
		return {"profile_id": self.profile_id, "role": self.role.value, "read_at": self.read_at.isoformat()}


@dataclass(slots=True)
class Message:
	message_id: str
	conversation_id: str
	sender: SenderSnapshot
	receiver_id: str
	receiver_role: Role
	content: str
	created_at: datetime
	message_type: str = "text"
	priority: str = "normal"
	status: str = "sent"
	is_read: bool = False
	read_by: List[ReadReceipt] = field(default_factory=list)
	is_archived: bool = False
	archived_at: Optional[datetime] = None
	reply_to: Optional[str] = None
	requires_approval: bool = False
	is_approved: bool = True
	approved_by: Optional[str] = None
	approved_at: Optional[datetime] = None

	@property
	def receiver(self) -> ProfileRef:
		return ProfileRef(self.receiver_role, self.receiver_id)

	@property
	def is_reply(self) -> bool:
		return self.reply_to is not None

	def is_addressed_to(self, ref: ProfileRef) -> bool:
		return self.receiver == ref

	def involves(self, ref: ProfileRef) -> bool:
		return self.sender.ref == ref or self.receiver == ref

	def is_read_by(self, ref: ProfileRef) -> bool:
		return any(receipt.ref == ref for receipt in self.read_by)

	def record_read(self, ref: ProfileRef, now: datetime) -> bool:
		"""Append a read receipt for ``ref``; returns False when already present."""
		if self.is_read_by(ref):
			return False
		self.read_by.append(ReadReceipt(profile_id=ref.profile_id, role=ref.role, read_at=now))
		if self.is_addressed_to(ref):
			self.is_read = True
			self.status = "read"
		return True

	def approve(self, approver: ProfileRef, now: datetime) -> bool:
		if self.is_approved:
			return False
		self.is_approved = True
		self.approved_by = approver.profile_id
		self.approved_at = now
		return True

	def archive(self, now: datetime) -> bool:
		if self.is_archived:
			return False
		self.is_archived = True
		self.archived_at = now
		return True

	def visible_in_inbox(self, reader: ProfileRef) -> bool:
		"""Approval visibility rule shared by every inbox and thread query.

		Senders always see what they sent; everyone else only once the message
		is approved. Real-time delivery does not consult this.
		"""
		return self.is_approved or self.sender.ref == reader

	def to_dict(self) -> dict:
		return {
			"message_id": self.message_id,
			"conversation_id": self.conversation_id,
			"sender": self.sender.to_dict(),
			"receiver_id": self.receiver_id,
			"receiver_role": self.receiver_role.value,
			"content": self.content,
			"message_type": self.message_type,
			"priority": self.priority,
			"status": self.status,
			"is_read": self.is_read,
			"read_by": [receipt.to_dict() for receipt in self.read_by],
			"is_archived": self.is_archived,
			"archived_at": _iso(self.archived_at),
			"reply_to": self.reply_to,
			"is_reply": self.is_reply,
			"requires_approval": self.requires_approval,
			"is_approved": self.is_approved,
			"approved_by": self.approved_by,
			"approved_at": _iso(self.approved_at),
			"created_at": self.created_at.isoformat(),
		}


@dataclass(slots=True)
class InboxSummary:
	total: int = 0
	unread: int = 0
	sent: int = 0
	received: int = 0
	urgent: int = 0
	awaiting_approval: int = 0
	approved: int = 0

	def count(self, message: Message, reader: ProfileRef) -> None:
		if message.is_archived or not message.visible_in_inbox(reader):
			return
		self.total += 1
		if message.is_approved:
			self.approved += 1
		if message.sender.ref == reader:
			self.sent += 1
			if not message.is_approved:
				self.awaiting_approval += 1
		else:
			self.received += 1
			if not message.is_read:
				self.unread += 1
			if message.priority == "urgent":
				self.urgent += 1

	def to_dict(self) -> dict:
		return {
			"total": self.total,
			"unread": self.unread,
			"sent": self.sent,
			"received": self.received,
			"urgent": self.urgent,
			"awaiting_approval": self.awaiting_approval,
			"approved": self.approved,
		}
