"""Conversation lifecycle and message sending."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import ulid

from . import events
from .delivery import MessageDelivery
from .exceptions import (
	ConversationNotFound,
	InvalidParticipants,
	MessageNotFound,
	MessagingNotAllowed,
	MissingField,
	NotParticipant,
	ParticipantsNotAllowed,
	ProfileNotFound,
	ValidationFailed,
)
from .models import (
	CONVERSATION_TYPES,
	MESSAGE_PRIORITIES,
	MESSAGE_TYPES,
	Conversation,
	ConversationSettings,
	Message,
	Participant,
	SenderSnapshot,
)
from .permissions import can_message, ensure_can_message_all
from .repo import MessagingRepository
from app.domain.profiles.models import ProfileRef, ResolvedProfile, Role
from app.domain.profiles.resolver import IdentityResolver
from app.obs import metrics as obs_metrics
from app.settings import settings

log = logging.getLogger(__name__)

_MODERATOR_ROLES = frozenset({Role.ADMIN, Role.HR})


def _now() -> datetime:
	return datetime.now(timezone.utc)


def profile_ref(profile: ResolvedProfile) -> ProfileRef:
	ref = profile.ref
	if ref is None:
		raise ProfileNotFound(message=f"no profile for {profile.profile_id}")
	return ref


def page_bounds(page: int, limit: int) -> Tuple[int, int]:
	page = max(1, int(page or 1))
	limit = max(1, min(int(limit or 50), settings.messages_page_limit_max))
	return page, limit


@dataclass(slots=True)
class MessagePage:
	items: List[Message]
	page: int
	limit: int
	has_more: bool


@dataclass(slots=True)
class ConversationView:
	"""A conversation plus resolved profiles for its participants."""

	conversation: Conversation
	profiles: Dict[ProfileRef, ResolvedProfile]


def validate_message_fields(message_type: str, priority: str) -> None:
	if message_type not in MESSAGE_TYPES:
		raise ValidationFailed("invalid_message_type", f"unsupported message type {message_type!r}")
	if priority not in MESSAGE_PRIORITIES:
		raise ValidationFailed("invalid_priority", f"unsupported priority {priority!r}")


class ConversationService:
	def __init__(
		self,
		repository: MessagingRepository | None = None,
		resolver: IdentityResolver | None = None,
		delivery: MessageDelivery | None = None,
	) -> None:
		self._repo = repository or MessagingRepository()
		self._resolver = resolver or IdentityResolver()
		self._delivery = delivery or MessageDelivery()

	async def create_conversation(
		self,
		requester: ResolvedProfile,
		participants: Sequence[ProfileRef],
		*,
		conversation_type: str = "direct",
		title: Optional[str] = None,
		description: Optional[str] = None,
	) -> Tuple[Conversation, bool]:
		"""Create a conversation, or return the active direct one for the same pair.

		Returns ``(conversation, created)``.
		"""
		me = profile_ref(requester)
		if conversation_type not in CONVERSATION_TYPES:
			raise ValidationFailed("invalid_conversation_type", f"unsupported type {conversation_type!r}")
		refs: List[ProfileRef] = []
		for ref in participants:
			if ref not in refs:
				refs.append(ref)
		if me not in refs:
			refs.append(me)
		if len(refs) < 2:
			raise InvalidParticipants(message="a conversation needs at least two participants")
		if conversation_type == "direct" and len(refs) != 2:
			raise InvalidParticipants(message="a direct conversation has exactly two participants")
		try:
			ensure_can_message_all(me, refs)
		except MessagingNotAllowed:
			obs_metrics.inc_messaging_reject("permission")
			raise
		for ref in refs:
			if ref != me:
				await self._resolver.require_ref(ref)

		now = _now()
		conversation = Conversation(
			conversation_id=str(uuid.uuid4()),
			participants=[Participant(profile_id=ref.profile_id, role=ref.role, joined_at=now) for ref in refs],
			conversation_type=conversation_type,
			title=title or f"Conversation with {len(refs)} participants",
			description=description,
			settings=ConversationSettings(allow_new_participants=conversation_type != "direct"),
			created_at=now,
			updated_at=now,
		)
		stored, created = await self._repo.create_conversation(conversation)
		obs_metrics.inc_conversation_created(conversation_type, "created" if created else "existing")
		if created:
			log.info(
				"conversation_created",
				extra={"conversation_id": stored.conversation_id, "conversation_type": conversation_type},
			)
			await self._delivery.conversation_changed(stored, events.CONVERSATION_CREATED)
		elif any(not stored.is_active_participant(ref) for ref in refs):
			# Reopening a direct conversation brings back a party who had left it.
			for ref in refs:
				stored.add_participant(ref, now)
			stored.updated_at = now
			await self._repo.save_participants(stored)
			await self._delivery.conversation_changed(stored, events.CONVERSATION_UPDATED)
		return stored, created

	async def send_message(
		self,
		conversation_id: str,
		sender: ResolvedProfile,
		content: str,
		*,
		message_type: str = "text",
		priority: str = "normal",
		reply_to: Optional[str] = None,
	) -> Message:
		if not conversation_id:
			raise MissingField("conversation_id")
		if content is None or not str(content).strip():
			raise MissingField("content")
		validate_message_fields(message_type, priority)
		me = profile_ref(sender)
		conversation = await self._load(conversation_id)
		if not conversation.is_active_participant(me):
			obs_metrics.inc_messaging_reject("not_participant")
			raise NotParticipant(message="sender is not an active participant")
		others = [participant.ref for participant in conversation.other_active_participants(me)]
		try:
			ensure_can_message_all(me, others)
		except MessagingNotAllowed:
			obs_metrics.inc_messaging_reject("permission")
			raise
		if reply_to:
			parent = await self._repo.get_message(reply_to)
			if parent is None or parent.conversation_id != conversation.conversation_id:
				raise MessageNotFound(message=f"reply target {reply_to} not found")

		gated = conversation.settings.require_approval
		receiver = others[0] if others else me
		message = Message(
			message_id=str(ulid.new()),
			conversation_id=conversation.conversation_id,
			sender=SenderSnapshot.from_profile(sender),
			receiver_id=receiver.profile_id,
			receiver_role=receiver.role,
			content=str(content),
			created_at=_now(),
			message_type=message_type,
			priority=priority,
			reply_to=reply_to,
			requires_approval=gated,
			is_approved=not gated,
		)
		stored = await self._repo.append_message(message)
		obs_metrics.inc_message_sent("conversation", approved=stored.is_approved)
		await self._delivery.message_created(stored, others)
		return stored

	async def list_conversation_messages(
		self,
		conversation_id: str,
		requester: ResolvedProfile,
		*,
		page: int = 1,
		limit: int = 50,
	) -> MessagePage:
		"""Newest-first page of the conversation's messages.

		Two-party direct conversations also include messages exchanged between
		the same people under legacy role-pair keys or sibling profiles.
		"""
		me = profile_ref(requester)
		conversation = await self._load(conversation_id)
		if not conversation.is_active_participant(me):
			raise NotParticipant()
		page, limit = page_bounds(page, limit)
		pairs: List[Tuple[ProfileRef, ProfileRef]] = []
		if conversation.is_direct and len(conversation.participants) == 2:
			one, two = conversation.participants
			pairs = await alias_pairs(self._resolver, one.ref, two.ref)
		messages = await self._repo.list_messages(
			conversation_ids=[conversation.conversation_id],
			pairs=pairs,
			visible_to=me,
			offset=(page - 1) * limit,
			limit=limit + 1,
		)
		await self._repo.touch_last_seen(conversation.conversation_id, me, _now())
		return MessagePage(items=messages[:limit], page=page, limit=limit, has_more=len(messages) > limit)

	async def mark_as_read(self, message_id: str, reader: ResolvedProfile) -> Message:
		me = profile_ref(reader)
		message = await self._repo.get_message(message_id)
		if message is None:
			raise MessageNotFound()
		conversation = await self._repo.get_conversation(message.conversation_id)
		if not message.involves(me) and (conversation is None or not conversation.is_active_participant(me)):
			raise NotParticipant()
		now = _now()
		first_read = await self._repo.record_read(message_id, me, now, is_receiver=message.is_addressed_to(me))
		if first_read:
			obs_metrics.inc_message_read()
			await self._delivery.message_read(message, me, now)
			if conversation is not None:
				await self._repo.touch_last_seen(conversation.conversation_id, me, now)
		updated = await self._repo.get_message(message_id)
		return updated or message

	async def mark_conversation_seen(self, conversation_id: str, reader: ResolvedProfile) -> int:
		me = profile_ref(reader)
		conversation = await self._load(conversation_id)
		if not conversation.is_active_participant(me):
			raise NotParticipant()
		now = _now()
		updated = await self._repo.mark_seen(me, conversation_ids=[conversation.conversation_id], now=now)
		await self._repo.touch_last_seen(conversation.conversation_id, me, now)
		return updated

	async def get_conversation(self, conversation_id: str, requester: ResolvedProfile) -> ConversationView:
		me = profile_ref(requester)
		conversation = await self._load(conversation_id)
		if not conversation.is_active_participant(me):
			raise NotParticipant()
		now = _now()
		await self._repo.touch_last_seen(conversation.conversation_id, me, now)
		conversation.touch_last_seen(me, now)
		profiles = {}
		for participant in conversation.participants:
			profiles[participant.ref] = await self._resolver.resolve_ref(participant.ref)
		return ConversationView(conversation=conversation, profiles=profiles)

	async def list_conversations(
		self,
		requester: ResolvedProfile,
		*,
		page: int = 1,
		limit: int = 20,
		conversation_type: Optional[str] = None,
		include_archived: bool = False,
	) -> Tuple[List[Conversation], int]:
		me = profile_ref(requester)
		page, limit = page_bounds(page, limit)
		return await self._repo.list_conversations_for(
			me,
			conversation_type=conversation_type,
			include_archived=include_archived,
			offset=(page - 1) * limit,
			limit=limit,
		)

	async def add_participant(
		self,
		conversation_id: str,
		requester: ResolvedProfile,
		participant: ProfileRef,
	) -> Conversation:
		me = profile_ref(requester)
		conversation = await self._load(conversation_id)
		if not conversation.is_active_participant(me):
			raise NotParticipant()
		if not conversation.settings.allow_new_participants:
			raise ParticipantsNotAllowed(message="this conversation does not accept new participants")
		if not can_message(me.role, participant.role):
			obs_metrics.inc_messaging_reject("permission")
			raise MessagingNotAllowed(me.role.value, participant.role.value)
		await self._resolver.require_ref(participant)
		now = _now()
		conversation.add_participant(participant, now)
		conversation.updated_at = now
		await self._repo.save_participants(conversation)
		await self._delivery.conversation_changed(conversation, events.CONVERSATION_UPDATED)
		return conversation

	async def remove_participant(
		self,
		conversation_id: str,
		requester: ResolvedProfile,
		participant: ProfileRef,
	) -> Conversation:
		me = profile_ref(requester)
		conversation = await self._load(conversation_id)
		if participant != me and me.role not in _MODERATOR_ROLES:
			raise NotParticipant(message="only the participant or a moderator can remove a participant")
		if not conversation.deactivate_participant(participant):
			raise NotParticipant(message=f"{participant} is not an active participant")
		conversation.updated_at = _now()
		await self._repo.save_participants(conversation)
		await self._delivery.conversation_changed(
			conversation,
			events.CONVERSATION_UPDATED,
			also_notify=[participant],
		)
		return conversation

	async def archive_message(self, message_id: str, requester: ResolvedProfile) -> Message:
		me = profile_ref(requester)
		message = await self._repo.get_message(message_id)
		if message is None:
			raise MessageNotFound()
		if not message.involves(me):
			raise NotParticipant()
		await self._repo.set_archived(message_id, _now())
		updated = await self._repo.get_message(message_id)
		return updated or message

	async def _load(self, conversation_id: str) -> Conversation:
		conversation = await self._repo.get_conversation(conversation_id)
		if conversation is None or conversation.status == "deleted":
			raise ConversationNotFound()
		return conversation


async def alias_pairs(
	resolver: IdentityResolver,
	one: ProfileRef,
	two: ProfileRef,
) -> List[Tuple[ProfileRef, ProfileRef]]:
	"""Every (a, b) pair where a is one of ``one``'s profiles and b one of ``two``'s.

	Profiles belonging to the same person are found through their shared email.
	"""
	side_one = await _aliases(resolver, one)
	side_two = await _aliases(resolver, two)
	return [(a, b) for a in side_one for b in side_two if a != b]


async def _aliases(resolver: IdentityResolver, ref: ProfileRef) -> List[ProfileRef]:
	aliases = [ref]
	profile = await resolver.resolve_ref(ref)
	if profile.is_unknown:
		return aliases
	for alias in await resolver.aliases_for_email(profile.email):
		if alias not in aliases:
			aliases.append(alias)
	return aliases

