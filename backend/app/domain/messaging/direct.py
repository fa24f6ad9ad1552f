"""Role-pair direct messages keyed by ``Role:id|Role:id`` conversation keys.

These predate conversation entities. Employee -> Admin messages are stored but
wait for an admin's approval before they count as received.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import ulid

from .delivery import MessageDelivery
from .exceptions import (
	ApprovalNotAllowed,
	InvalidParticipants,
	MessageNotFound,
	MessagingNotAllowed,
	MissingField,
)
from .keys import derive_conversation_key
from .models import InboxSummary, Message, SenderSnapshot
from .permissions import can_message, requires_approval
from .repo import MessagingRepository
from .service import MessagePage, alias_pairs, page_bounds, profile_ref, validate_message_fields
from app.domain.profiles.models import ProfileRef, ResolvedProfile, Role
from app.domain.profiles.resolver import IdentityResolver
from app.obs import metrics as obs_metrics

log = logging.getLogger(__name__)


def _now() -> datetime:
	return datetime.now(timezone.utc)


class DirectMessageService:
	def __init__(
		self,
		repository: MessagingRepository | None = None,
		resolver: IdentityResolver | None = None,
		delivery: MessageDelivery | None = None,
	) -> None:
		self._repo = repository or MessagingRepository()
		self._resolver = resolver or IdentityResolver()
		self._delivery = delivery or MessageDelivery()

	async def send_direct(
		self,
		sender: ResolvedProfile,
		receiver: ProfileRef,
		content: str,
		*,
		message_type: str = "text",
		priority: str = "normal",
		reply_to: Optional[str] = None,
	) -> Message:
		if content is None or not str(content).strip():
			raise MissingField("content")
		validate_message_fields(message_type, priority)
		me = profile_ref(sender)
		if receiver == me:
			raise InvalidParticipants(message="cannot message yourself")
		gated = requires_approval(me.role, receiver.role)
		if not gated and not can_message(me.role, receiver.role):
			obs_metrics.inc_messaging_reject("permission")
			raise MessagingNotAllowed(me.role.value, receiver.role.value)
		await self._resolver.require_ref(receiver)
		conversation_id = derive_conversation_key(me, receiver)
		if reply_to:
			parent = await self._repo.get_message(reply_to)
			if parent is None or parent.conversation_id != conversation_id:
				raise MessageNotFound(message=f"reply target {reply_to} not found")

		message = Message(
			message_id=str(ulid.new()),
			conversation_id=conversation_id,
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
		obs_metrics.inc_message_sent("direct", approved=stored.is_approved)
		if gated:
			log.info("direct_message_awaiting_approval", extra={"message_id": stored.message_id})
		await self._delivery.message_created(stored, [receiver])
		return stored

	async def list_thread(
		self,
		requester: ResolvedProfile,
		peer: ProfileRef,
		*,
		page: int = 1,
		limit: int = 50,
	) -> MessagePage:
		"""A page of the thread with ``peer``, oldest first within the page."""
		me = profile_ref(requester)
		page, limit = page_bounds(page, limit)
		pairs = await alias_pairs(self._resolver, me, peer)
		conversation_ids = [derive_conversation_key(me, peer)] if me != peer else []
		messages = await self._repo.list_messages(
			conversation_ids=conversation_ids,
			pairs=pairs,
			visible_to=me,
			offset=(page - 1) * limit,
			limit=limit + 1,
		)
		items = list(reversed(messages[:limit]))
		return MessagePage(items=items, page=page, limit=limit, has_more=len(messages) > limit)

	async def mark_thread_seen(self, reader: ResolvedProfile, peer: ProfileRef) -> int:
		me = profile_ref(reader)
		return await self._repo.mark_seen(me, senders=[peer], now=_now())

	async def inbox_summary(self, reader: ResolvedProfile) -> InboxSummary:
		me = profile_ref(reader)
		summary = InboxSummary()
		for message in await self._repo.list_messages_involving(me):
			summary.count(message, me)
		return summary

	async def pending_approvals(self, admin: ResolvedProfile, *, page: int = 1, limit: int = 50) -> MessagePage:
		me = self._require_admin(admin)
		page, limit = page_bounds(page, limit)
		messages = await self._repo.list_pending_approval(me, offset=(page - 1) * limit, limit=limit + 1)
		return MessagePage(items=messages[:limit], page=page, limit=limit, has_more=len(messages) > limit)

	async def approve_message(self, message_id: str, approver: ResolvedProfile) -> Message:
		me = self._require_admin(approver)
		message = await self._repo.get_message(message_id)
		if message is None:
			raise MessageNotFound()
		if not message.is_addressed_to(me):
			raise ApprovalNotAllowed(message="only the receiving admin can approve this message")
		if await self._repo.set_approved(message_id, me, _now()):
			obs_metrics.inc_message_approved()
			message = await self._repo.get_message(message_id) or message
			await self._delivery.message_approved(message)
		return message

	@staticmethod
	def _require_admin(profile: ResolvedProfile) -> ProfileRef:
		me = profile_ref(profile)
		if me.role is not Role.ADMIN:
			raise ApprovalNotAllowed(message="approvals are restricted to admins")
		return me
