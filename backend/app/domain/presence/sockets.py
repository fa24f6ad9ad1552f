"""Socket.IO namespace for real-time messaging."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import socketio

from .engine import PresenceEngine, get_engine
from app.domain.messaging import events
from app.domain.messaging.exceptions import AuthFailed, MessagingError
from app.infra.rate_limit import allow as rate_allow
from app.obs import logging as obs_logging
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _handshake_token(environ: dict, auth: Optional[dict]) -> Optional[str]:
	scope = environ.get("asgi.scope", environ)
	auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
	token = auth_payload.get("token") if isinstance(auth_payload, dict) else None
	if not token:
		auth_header = _header(scope, "authorization")
		if auth_header and auth_header.lower().startswith("bearer "):
			token = auth_header.split(" ", 1)[1]
	return str(token) if token else None


def _recipient_ids(data: dict) -> List[str]:
	raw = data.get("recipients") or data.get("receiverId") or []
	if isinstance(raw, (str, int, dict)):
		raw = [raw]
	ids: List[str] = []
	for item in raw:
		profile_id = item.get("profileId") if isinstance(item, dict) else item
		if profile_id:
			ids.append(str(profile_id))
	return ids


class MessagingNamespace(socketio.AsyncNamespace):
	"""Transport for the presence engine; every event but ``authenticate`` needs an identity."""

	def __init__(self, engine: PresenceEngine | None = None, namespace: str = "/messaging") -> None:
		super().__init__(namespace)
		self._engine = engine or get_engine()
		self._engine.attach(self)

	@property
	def engine(self) -> PresenceEngine:
		return self._engine

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		self._engine.connect(sid)
		await self.emit("connected", {"sid": sid, "authenticated": False}, to=sid)
		token = _handshake_token(environ, auth)
		if token:
			await self._authenticate(sid, token)

	async def on_disconnect(self, sid: str, reason: Any = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		identity = await self._engine.disconnect(sid)
		if identity is not None:
			logger.info("messaging disconnect sid=%s profile=%s reason=%s", sid, identity.profile_id, reason)

	async def on_authenticate(self, sid: str, data: Any = None) -> None:
		if not await self._check_limits(sid, "authenticate"):
			return
		token = data.get("token") if isinstance(data, dict) else data
		await self._authenticate(sid, str(token) if token else None)

	async def on_join_room(self, sid: str, data: Any = None) -> None:
		if not await self._guard(sid, "join_room"):
			return
		room = data.get("room") if isinstance(data, dict) else data
		try:
			await self._engine.join_room(sid, str(room or ""))
		except MessagingError as exc:
			await self._emit_error(sid, exc)

	async def on_leave_room(self, sid: str, data: Any = None) -> None:
		if not await self._guard(sid, "leave_room"):
			return
		room = data.get("room") if isinstance(data, dict) else data
		await self._engine.leave_room(sid, str(room or ""))

	async def on_typing(self, sid: str, data: Any = None) -> None:
		await self._relay_typing(sid, data, events.TYPING_INDICATOR)

	async def on_typing_stopped(self, sid: str, data: Any = None) -> None:
		await self._relay_typing(sid, data, events.TYPING_STOPPED)

	async def on_get_online_users(self, sid: str, data: Any = None) -> None:
		if not await self._guard(sid, "get_online_users"):
			return
		await self.emit("online_users", self._engine.connection_stats(), to=sid)

	async def _relay_typing(self, sid: str, data: Any, event: str) -> None:
		if not await self._guard(sid, event):
			return
		identity = self._engine.identity_for(sid)
		if not isinstance(data, dict):
			await self.emit("error", {"code": "invalid_payload"}, to=sid)
			return
		conversation_id = str(data.get("conversationId") or "")
		payload = events.typing_payload(conversation_id, identity)
		for profile_id in _recipient_ids(data):
			if profile_id == identity.profile_id:
				continue
			await self._engine.broadcast_to_user(profile_id, event, payload)

	async def _authenticate(self, sid: str, token: Optional[str]) -> None:
		tokens = obs_logging.bind_context(sid=sid)
		try:
			await self._engine.authenticate(sid, token)
		except MessagingError as exc:
			if not isinstance(exc, AuthFailed):
				obs_metrics.socket_auth(exc.reason)
			await self.emit("authentication_failed", exc.to_detail(), to=sid)
			await self.disconnect(sid)
		finally:
			obs_logging.reset_context(tokens)

	async def _guard(self, sid: str, event: str) -> bool:
		if not await self._check_limits(sid, event):
			return False
		if self._engine.identity_for(sid) is None:
			await self.emit("error", {"code": "unauthenticated", "event": event}, to=sid)
			return False
		obs_metrics.socket_event(self.namespace, event)
		return True

	async def _check_limits(self, sid: str, event: str) -> bool:
		allowed = await rate_allow(
			"messaging_socket",
			sid,
			limit=settings.socket_event_limit,
			window_seconds=settings.socket_event_window_seconds,
		)
		if allowed:
			return True
		obs_metrics.socket_rate_limited(event)
		await self.emit(
			"rate_limit_exceeded",
			{"event": event, "limit": settings.socket_event_limit, "windowSeconds": settings.socket_event_window_seconds},
			to=sid,
		)
		return False

	async def _emit_error(self, sid: str, exc: MessagingError) -> None:
		await self.emit("error", {"code": exc.reason, "message": exc.message}, to=sid)
