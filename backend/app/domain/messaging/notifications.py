"""Fire-and-forget push notifications for offline recipients.

Notifications are appended to a Redis stream consumed by the push worker.
Dispatch never blocks or fails the send that triggered it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from redis.exceptions import RedisError

from .models import Message
from app.domain.profiles.models import ProfileRef
from app.infra.redis import redis_client
from app.obs import metrics as obs_metrics
from app.settings import settings

log = logging.getLogger(__name__)


def preview(content: str, limit: Optional[int] = None) -> str:
	limit = settings.notification_preview_chars if limit is None else limit
	if len(content) <= limit:
		return content
	return content[:limit] + "..."


@dataclass(frozen=True, slots=True)
class OutboundNotification:
	recipient_profile_id: str
	recipient_role: str
	title: str
	body: str
	data: Dict[str, str] = field(default_factory=dict)

	def to_fields(self) -> Dict[str, str]:
		return {
			"recipient_id": self.recipient_profile_id,
			"recipient_role": self.recipient_role,
			"title": self.title,
			"body": self.body,
			"data": json.dumps(self.data, sort_keys=True),
		}


def message_notification(message: Message, recipient: ProfileRef) -> OutboundNotification:
	return OutboundNotification(
		recipient_profile_id=recipient.profile_id,
		recipient_role=recipient.role.value,
		title=f"New Message from {message.sender.name}",
		body=preview(message.content),
		data={
			"type": "message",
			"messageId": message.message_id,
			"conversationId": message.conversation_id,
			"senderId": message.sender.profile_id,
			"senderRole": message.sender.role.value,
		},
	)


class NotificationDispatcher:
	def __init__(self, *, stream: Optional[str] = None, enabled: Optional[bool] = None) -> None:
		self._stream = stream or settings.notification_stream
		self._enabled = settings.notifications_enabled if enabled is None else enabled
		self._pending: Set[asyncio.Task] = set()

	def dispatch(self, notification: OutboundNotification) -> None:
		"""Schedule delivery and return immediately."""
		if not self._enabled:
			obs_metrics.inc_notification("disabled")
			return
		task = asyncio.get_running_loop().create_task(self._publish(notification))
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _publish(self, notification: OutboundNotification) -> None:
		try:
			await redis_client.xadd(
				self._stream,
				notification.to_fields(),
				maxlen=settings.notification_stream_maxlen,
			)
		except (RedisError, OSError) as exc:
			obs_metrics.inc_notification("failed")
			log.warning(
				"notification_dispatch_failed",
				extra={"recipient_id": notification.recipient_profile_id, "error": str(exc)},
			)
			return
		obs_metrics.inc_notification("queued")

	async def drain(self) -> None:
		"""Wait for every scheduled notification (tests and shutdown)."""
		while self._pending:
			await asyncio.gather(*list(self._pending))


_DISPATCHER = NotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
	return _DISPATCHER


def set_dispatcher(dispatcher: NotificationDispatcher) -> None:
	global _DISPATCHER
	_DISPATCHER = dispatcher
