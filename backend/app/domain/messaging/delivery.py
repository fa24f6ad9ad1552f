"""Real-time fan-out for persisted messaging changes.

Everything here runs after the write succeeded. Socket delivery goes through
the presence engine (which never raises) and push notifications are only
queued for recipients with no live connection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from . import events
from .models import Conversation, Message
from .notifications import NotificationDispatcher, get_dispatcher, message_notification
from app.domain.presence.engine import PresenceEngine, get_engine
from app.domain.profiles.models import ProfileRef


class MessageDelivery:
	def __init__(
		self,
		*,
		engine: Optional[PresenceEngine] = None,
		dispatcher: Optional[NotificationDispatcher] = None,
	) -> None:
		self._engine = engine
		self._dispatcher = dispatcher

	@property
	def engine(self) -> PresenceEngine:
		return self._engine or get_engine()

	@property
	def dispatcher(self) -> NotificationDispatcher:
		return self._dispatcher or get_dispatcher()

	async def message_created(self, message: Message, recipients: Iterable[ProfileRef]) -> None:
		payload = events.message_payload(message)
		for recipient in recipients:
			if recipient == message.sender.ref:
				continue
			await self.engine.broadcast_to_user(recipient.profile_id, events.MESSAGE_RECEIVED, payload)
			if not self.engine.is_online(recipient.profile_id):
				self.dispatcher.dispatch(message_notification(message, recipient))
		await self.engine.broadcast_to_user(message.sender.profile_id, events.MESSAGE_SENT, payload)

	async def message_read(self, message: Message, reader: ProfileRef, read_at: datetime) -> None:
		if message.sender.ref == reader:
			return
		await self.engine.broadcast_to_user(
			message.sender.profile_id,
			events.MESSAGE_READ,
			events.message_read_payload(message, reader, read_at),
		)

	async def message_approved(self, message: Message) -> None:
		await self.engine.broadcast_to_user(
			message.sender.profile_id,
			events.MESSAGE_APPROVED,
			events.message_approved_payload(message),
		)

	async def conversation_changed(
		self,
		conversation: Conversation,
		event: str,
		*,
		also_notify: Iterable[ProfileRef] = (),
	) -> None:
		payload = events.conversation_payload(conversation)
		targets = {participant.profile_id for participant in conversation.active_participants()}
		targets.update(ref.profile_id for ref in also_notify)
		for profile_id in sorted(targets):
			await self.engine.broadcast_to_user(profile_id, event, payload)
