from unittest.mock import AsyncMock

import pytest
import socketio

from app.domain.presence import PresenceEngine
from app.domain.presence.sockets import MessagingNamespace
from app.infra.jwt import encode_access
from app.settings import settings


def _scope_with_authorization(token: str) -> dict:
	return {
		"headers": [(b"authorization", f"Bearer {token}".encode())],
	}


def _namespace() -> MessagingNamespace:
	server = socketio.AsyncServer(async_mode="asgi")
	namespace = MessagingNamespace(PresenceEngine())
	server.register_namespace(namespace)
	namespace.emit = AsyncMock()
	namespace.enter_room = AsyncMock()
	namespace.leave_room = AsyncMock()
	namespace.disconnect = AsyncMock()
	return namespace


def _events(namespace, event):
	return [call for call in namespace.emit.await_args_list if call.args[0] == event]


@pytest.mark.asyncio
async def test_connect_without_token_waits_for_authenticate(profiles):
	namespace = _namespace()
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})

	connected = _events(namespace, "connected")
	assert connected[0].args[1] == {"sid": "sid-1", "authenticated": False}
	assert namespace.engine.identity_for("sid-1") is None

	await namespace.trigger_event("authenticate", "sid-1", {"token": encode_access({"sub": "auth-e1"})})
	assert namespace.engine.identity_for("sid-1").profile_id == "e1"
	assert _events(namespace, "authenticated")
	namespace.enter_room.assert_any_await("sid-1", "user_e1")


@pytest.mark.asyncio
async def test_connect_with_bearer_header_authenticates(profiles):
	namespace = _namespace()
	token = encode_access({"sub": "auth-h1", "role": "HR"})
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_authorization(token)})
	assert namespace.engine.is_online("h1")
	assert "hr_room" in namespace.engine.rooms_of("sid-1")


@pytest.mark.asyncio
async def test_auth_payload_token_is_used(profiles):
	namespace = _namespace()
	token = encode_access({"sub": "auth-a1"})
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}}, {"token": token})
	assert namespace.engine.identity_for("sid-1").profile_id == "a1"


@pytest.mark.asyncio
async def test_bad_token_emits_failure_and_disconnects(profiles):
	namespace = _namespace()
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_authorization("garbage")})
	failures = _events(namespace, "authentication_failed")
	assert failures[0].args[1]["reason"] == "invalid_token"
	namespace.disconnect.assert_awaited_once_with("sid-1")
	assert namespace.engine.connection_stats()["totalConnections"] == 0


@pytest.mark.asyncio
async def test_events_require_authentication(profiles):
	namespace = _namespace()
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})
	await namespace.trigger_event("join_room", "sid-1", {"room": "department_sales"})
	errors = _events(namespace, "error")
	assert errors[0].args[1] == {"code": "unauthenticated", "event": "join_room"}
	assert namespace.engine.rooms_of("sid-1") == set()


@pytest.mark.asyncio
async def test_join_room_rejects_foreign_personal_room(profiles):
	namespace = _namespace()
	token = encode_access({"sub": "auth-e1"})
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_authorization(token)})

	await namespace.trigger_event("join_room", "sid-1", {"room": "user_h1"})
	errors = _events(namespace, "error")
	assert errors[0].args[1]["code"] == "room_not_allowed"

	await namespace.trigger_event("join_room", "sid-1", "project_apollo")
	assert "project_apollo" in namespace.engine.rooms_of("sid-1")
	await namespace.trigger_event("leave_room", "sid-1", {"room": "project_apollo"})
	assert "project_apollo" not in namespace.engine.rooms_of("sid-1")


@pytest.mark.asyncio
async def test_typing_is_relayed_to_recipients(profiles):
	namespace = _namespace()
	await namespace.trigger_event(
		"connect", "sid-e1", {"asgi.scope": _scope_with_authorization(encode_access({"sub": "auth-e1"}))}
	)
	await namespace.trigger_event(
		"connect", "sid-h1", {"asgi.scope": _scope_with_authorization(encode_access({"sub": "auth-h1"}))}
	)
	namespace.emit.reset_mock()

	await namespace.trigger_event(
		"typing",
		"sid-e1",
		{"conversationId": "HR:h1|Employee:e1", "recipients": [{"profileId": "h1"}, {"profileId": "e1"}]},
	)
	typing = _events(namespace, "typing_indicator")
	assert len(typing) == 1
	assert typing[0].kwargs == {"to": "sid-h1"}
	assert typing[0].args[1]["profileId"] == "e1"
	assert typing[0].args[1]["conversationId"] == "HR:h1|Employee:e1"

	await namespace.trigger_event("typing_stopped", "sid-e1", {"conversationId": "c1", "receiverId": "h1"})
	assert _events(namespace, "typing_stopped")[0].kwargs == {"to": "sid-h1"}


@pytest.mark.asyncio
async def test_online_users_and_disconnect(profiles):
	namespace = _namespace()
	await namespace.trigger_event(
		"connect", "sid-1", {"asgi.scope": _scope_with_authorization(encode_access({"sub": "auth-e1"}))}
	)
	await namespace.trigger_event("get_online_users", "sid-1", None)
	stats = _events(namespace, "online_users")[0].args[1]
	assert stats["onlineProfiles"] == 1

	await namespace.trigger_event("disconnect", "sid-1", "client disconnect")
	assert not namespace.engine.is_online("e1")
	departures = _events(namespace, "user_disconnected")
	assert departures[0].args[1]["profileId"] == "e1"


@pytest.mark.asyncio
async def test_rate_limit_emits_warning(profiles, monkeypatch):
	monkeypatch.setattr(settings, "socket_event_limit", 2)
	namespace = _namespace()
	await namespace.trigger_event(
		"connect", "sid-1", {"asgi.scope": _scope_with_authorization(encode_access({"sub": "auth-e1"}))}
	)
	for _ in range(3):
		await namespace.trigger_event("get_online_users", "sid-1", None)
	assert len(_events(namespace, "online_users")) == 2
	limited = _events(namespace, "rate_limit_exceeded")
	assert limited[0].args[1]["event"] == "get_online_users"
	assert limited[0].args[1]["limit"] == 2
