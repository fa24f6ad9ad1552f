import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.domain.messaging.models import Message, SenderSnapshot
from app.domain.messaging.notifications import NotificationDispatcher, message_notification, preview
from app.domain.profiles.models import ProfileRef, Role
from app.infra.redis import redis_client


def _message(content: str) -> Message:
	return Message(
		message_id="01HX0000000000000000000000",
		conversation_id="HR:h1|Employee:e1",
		sender=SenderSnapshot("h1", Role.HR, "Hana People", "hana@corp.example"),
		receiver_id="e1",
		receiver_role=Role.EMPLOYEE,
		content=content,
		created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
	)


def test_preview_truncates_long_content():
	assert preview("short", limit=10) == "short"
	assert preview("x" * 12, limit=10) == "x" * 10 + "..."


def test_message_notification_fields():
	notification = message_notification(_message("y" * 150), ProfileRef.employee("e1"))
	assert notification.title == "New Message from Hana People"
	assert notification.body == "y" * 100 + "..."
	fields = notification.to_fields()
	assert fields["recipient_id"] == "e1"
	assert fields["recipient_role"] == "Employee"
	assert json.loads(fields["data"]) == {
		"conversationId": "HR:h1|Employee:e1",
		"messageId": "01HX0000000000000000000000",
		"senderId": "h1",
		"senderRole": "HR",
		"type": "message",
	}


@pytest.mark.asyncio
async def test_dispatch_appends_to_stream(fake_redis):
	dispatcher = NotificationDispatcher(stream="notif:test", enabled=True)
	dispatcher.dispatch(message_notification(_message("hello"), ProfileRef.employee("e1")))
	await dispatcher.drain()
	entries = await fake_redis.xrange("notif:test")
	assert len(entries) == 1
	assert entries[0][1]["body"] == "hello"


@pytest.mark.asyncio
async def test_disabled_dispatcher_does_nothing(fake_redis):
	dispatcher = NotificationDispatcher(stream="notif:test", enabled=False)
	dispatcher.dispatch(message_notification(_message("hello"), ProfileRef.employee("e1")))
	await dispatcher.drain()
	assert await fake_redis.xlen("notif:test") == 0


@pytest.mark.asyncio
async def test_redis_failure_is_swallowed(fake_redis, monkeypatch):
	monkeypatch.setattr(fake_redis, "xadd", AsyncMock(side_effect=RedisConnectionError("down")))
	dispatcher = NotificationDispatcher(stream="notif:test", enabled=True)
	dispatcher.dispatch(message_notification(_message("hello"), ProfileRef.employee("e1")))
	await dispatcher.drain()
	assert redis_client.client is fake_redis
	fake_redis.xadd.assert_awaited_once()
