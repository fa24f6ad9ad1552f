"""Connection registry, room membership and best-effort fan-out.

The engine owns every piece of per-connection state: lifecycle, resolved
identity, room memberships and the profile -> connection map used for direct
delivery. The Socket.IO namespace is only the transport it emits through.

Broadcast helpers are side channels for persisted data and never raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from jwt import InvalidTokenError

from .serialization import safe_payload
from app.domain.messaging.exceptions import AuthFailed, Forbidden, ProfileNotFound
from app.domain.profiles.models import ResolvedProfile, Role
from app.domain.profiles.resolver import IdentityResolver
from app.infra.auth import AuthenticatedUser, decode_user
from app.obs import metrics as obs_metrics

log = logging.getLogger(__name__)

COMPANY_WIDE_ROOM = "company_wide"
PERSONAL_ROOM_PREFIX = "user_"

AUTHENTICATED = "authenticated"
USER_CONNECTED = "user_connected"
USER_DISCONNECTED = "user_disconnected"
ROOM_JOINED = "room_joined"
ROOM_LEFT = "room_left"


def personal_room(profile_id: str) -> str:
	return f"{PERSONAL_ROOM_PREFIX}{profile_id}"


def department_room(department: str) -> str:
	return f"department_{department}"


class Transport(Protocol):
	async def emit(self, event: str, data: Any = None, **kwargs: Any) -> None:
		...

	async def enter_room(self, sid: str, room: str) -> None:
		...

	async def leave_room(self, sid: str, room: str) -> None:
		...


class ConnectionState(str, Enum):
	CONNECTING = "connecting"
	AUTHENTICATING = "authenticating"
	AUTHENTICATED = "authenticated"
	DISCONNECTED = "disconnected"


@dataclass(slots=True)
class Connection:
	sid: str
	connected_at: datetime
	state: ConnectionState = ConnectionState.CONNECTING
	identity: Optional[ResolvedProfile] = None
	rooms: Set[str] = field(default_factory=set)
	authenticated_at: Optional[datetime] = None

	@property
	def is_authenticated(self) -> bool:
		return self.state is ConnectionState.AUTHENTICATED and self.identity is not None


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _stamp(payload: Any) -> Any:
	if isinstance(payload, dict) and "timestamp" not in payload:
		return {**payload, "timestamp": _now()}
	return payload


def default_rooms(profile: ResolvedProfile) -> List[str]:
	rooms = [personal_room(profile.profile_id)]
	if profile.role is not None:
		rooms.append(profile.role.room)
	rooms.append(COMPANY_WIDE_ROOM)
	if profile.role is Role.EMPLOYEE and profile.department:
		rooms.append(department_room(profile.department))
	return rooms


class PresenceEngine:
	def __init__(
		self,
		*,
		resolver: IdentityResolver | None = None,
		verify_token: Callable[[str], AuthenticatedUser] | None = None,
		transport: Transport | None = None,
	) -> None:
		self._resolver = resolver or IdentityResolver()
		self._verify_token = verify_token or decode_user
		self._transport = transport
		self._connections: Dict[str, Connection] = {}
		self._profile_sids: Dict[str, str] = {}
		self._rooms: Dict[str, Set[str]] = {}

	def attach(self, transport: Transport) -> None:
		self._transport = transport

	def reset(self) -> None:
		self._connections.clear()
		self._profile_sids.clear()
		self._rooms.clear()

	# lifecycle

	def connect(self, sid: str) -> Connection:
		connection = Connection(sid=sid, connected_at=_now())
		self._connections[sid] = connection
		return connection

	async def authenticate(self, sid: str, token: Optional[str]) -> ResolvedProfile:
		"""Verify ``token``, resolve the profile and join its default rooms.

		On failure the connection is torn down and AuthFailed raised; nothing
		about the attempt is kept. Re-authenticating an authenticated connection
		drops the previous identity and its rooms first.
		"""
		connection = self._connections.get(sid) or self.connect(sid)
		if connection.identity is not None:
			await self._release(connection)
		connection.state = ConnectionState.AUTHENTICATING
		if not token:
			await self._abort(sid, "missing_token")
			raise AuthFailed("missing_token", "authentication token required")
		try:
			user = self._verify_token(str(token))
		except InvalidTokenError as exc:
			await self._abort(sid, "invalid_token")
			raise AuthFailed("invalid_token", "token rejected") from exc
		try:
			profile = await self._resolver.require(user.id, user.role)
		except ProfileNotFound as exc:
			await self._abort(sid, "profile_not_found")
			raise AuthFailed("profile_not_found", exc.message) from exc
		if not self._is_live(connection):
			# The client left while the profile lookup was in flight.
			obs_metrics.socket_auth("disconnected")
			raise AuthFailed("disconnected", "connection closed during authentication")

		connection.identity = profile
		connection.state = ConnectionState.AUTHENTICATED
		connection.authenticated_at = _now()
		# Latest authenticated connection is the direct-delivery target.
		self._profile_sids[profile.profile_id] = sid
		for room in default_rooms(profile):
			await self._enter(connection, room)
		if not self._is_live(connection):
			obs_metrics.socket_auth("disconnected")
			raise AuthFailed("disconnected", "connection closed during authentication")
		obs_metrics.socket_auth("ok")
		obs_metrics.presence_online(len(self._profile_sids))
		log.info(
			"socket_authenticated",
			extra={"sid": sid, "profile_id": profile.profile_id, "role": profile.role.value},
		)
		await self._send(
			AUTHENTICATED,
			{
				"profileId": profile.profile_id,
				"role": profile.role.value,
				"name": profile.display_name,
				"rooms": sorted(connection.rooms),
			},
			to=sid,
		)
		await self.broadcast_to_all(
			USER_CONNECTED,
			{"profileId": profile.profile_id, "role": profile.role.value},
			skip_sid=sid,
		)
		return profile

	async def disconnect(self, sid: str) -> Optional[ResolvedProfile]:
		connection = self._connections.pop(sid, None)
		if connection is None:
			return None
		identity = connection.identity
		connection.state = ConnectionState.DISCONNECTED
		await self._release(connection)
		if identity is not None:
			await self.broadcast_to_all(
				USER_DISCONNECTED,
				{"profileId": identity.profile_id, "role": identity.role.value},
				skip_sid=sid,
			)
		return identity

	async def _abort(self, sid: str, reason: str) -> None:
		obs_metrics.socket_auth(reason)
		log.info("socket_auth_failed", extra={"sid": sid, "reason": reason})
		await self.disconnect(sid)

	async def _release(self, connection: Connection) -> None:
		for room in list(connection.rooms):
			await self._exit(connection, room)
		identity = connection.identity
		connection.identity = None
		connection.authenticated_at = None
		if identity is None:
			return
		if self._profile_sids.get(identity.profile_id) == connection.sid:
			del self._profile_sids[identity.profile_id]
			fallback = self._latest_sid_for(identity.profile_id, exclude=connection.sid)
			if fallback is not None:
				self._profile_sids[identity.profile_id] = fallback
		obs_metrics.presence_online(len(self._profile_sids))

	def _latest_sid_for(self, profile_id: str, *, exclude: str) -> Optional[str]:
		candidates = [
			connection
			for connection in self._connections.values()
			if connection.sid != exclude
			and connection.is_authenticated
			and connection.identity.profile_id == profile_id
		]
		if not candidates:
			return None
		return max(candidates, key=lambda c: c.authenticated_at or c.connected_at).sid

	# rooms

	async def join_room(self, sid: str, room: str) -> None:
		connection = self._require_authenticated(sid)
		room = str(room or "").strip()
		if not room:
			raise Forbidden("invalid_room")
		if room.startswith(PERSONAL_ROOM_PREFIX) and room != personal_room(connection.identity.profile_id):
			raise Forbidden("room_not_allowed")
		await self._enter(connection, room)
		await self._send(ROOM_JOINED, {"room": room}, to=sid)

	async def leave_room(self, sid: str, room: str) -> None:
		connection = self._require_authenticated(sid)
		if room not in connection.rooms:
			return
		await self._exit(connection, room)
		await self._send(ROOM_LEFT, {"room": room}, to=sid)

	def _require_authenticated(self, sid: str) -> Connection:
		connection = self._connections.get(sid)
		if connection is None or not connection.is_authenticated:
			raise AuthFailed("unauthenticated")
		return connection

	def _is_live(self, connection: Connection) -> bool:
		return self._connections.get(connection.sid) is connection

	async def _enter(self, connection: Connection, room: str) -> None:
		if not self._is_live(connection):
			return
		connection.rooms.add(room)
		self._rooms.setdefault(room, set()).add(connection.sid)
		if self._transport is not None:
			try:
				await self._transport.enter_room(connection.sid, room)
			except ValueError:
				log.debug("room_attach_failed", extra={"sid": connection.sid, "room": room}, exc_info=True)

	async def _exit(self, connection: Connection, room: str) -> None:
		connection.rooms.discard(room)
		members = self._rooms.get(room)
		if members is not None:
			members.discard(connection.sid)
			if not members:
				del self._rooms[room]
		if self._transport is not None:
			try:
				await self._transport.leave_room(connection.sid, room)
			except ValueError:
				log.debug("room_detach_failed", extra={"sid": connection.sid, "room": room}, exc_info=True)

	# fan-out

	async def broadcast_to_user(self, profile_id: str, event: str, payload: Any) -> bool:
		"""Deliver to the profile's connection, else its personal room.

		Returns True only for a direct delivery. Never raises.
		"""
		try:
			data = safe_payload(_stamp(payload))
		except Exception:  # broadcast must not fail the caller
			log.warning("broadcast_payload_failed", extra={"event": event}, exc_info=True)
			obs_metrics.broadcast_failure("payload")
			return False
		sid = self._profile_sids.get(str(profile_id))
		if sid is not None and self._transport is not None:
			try:
				await self._transport.emit(event, data, to=sid)
			except Exception:  # fall through to the room
				log.warning("broadcast_direct_failed", extra={"event": event, "sid": sid}, exc_info=True)
				obs_metrics.broadcast_failure("direct")
			else:
				obs_metrics.broadcast_delivery("direct")
				return True
		await self._broadcast(event, data, room=personal_room(str(profile_id)), path="room")
		return False

	async def broadcast_to_room(self, room: str, event: str, payload: Any) -> None:
		try:
			data = safe_payload(_stamp(payload))
			if isinstance(data, dict):
				data["room"] = room
		except Exception:  # broadcast must not fail the caller
			log.warning("broadcast_payload_failed", extra={"event": event}, exc_info=True)
			obs_metrics.broadcast_failure("payload")
			return
		await self._broadcast(event, data, room=room, path="room")

	async def broadcast_to_all(self, event: str, payload: Any, *, skip_sid: Optional[str] = None) -> None:
		try:
			data = safe_payload(_stamp(payload))
		except Exception:  # broadcast must not fail the caller
			log.warning("broadcast_payload_failed", extra={"event": event}, exc_info=True)
			obs_metrics.broadcast_failure("payload")
			return
		await self._broadcast(event, data, skip_sid=skip_sid, path="all")

	async def _broadcast(self, event: str, data: Any, *, path: str, **kwargs: Any) -> None:
		if self._transport is None:
			return
		try:
			await self._transport.emit(event, data, **kwargs)
		except Exception:  # logged and counted, never propagated
			log.warning("broadcast_failed", extra={"event": event, "path": path}, exc_info=True)
			obs_metrics.broadcast_failure(path)
			return
		obs_metrics.broadcast_delivery(path)

	async def _send(self, event: str, payload: Any, *, to: str) -> None:
		await self._broadcast(event, safe_payload(_stamp(payload)), to=to, path="direct")

	# introspection

	def identity_for(self, sid: str) -> Optional[ResolvedProfile]:
		connection = self._connections.get(sid)
		if connection is None or not connection.is_authenticated:
			return None
		return connection.identity

	def state_of(self, sid: str) -> ConnectionState:
		connection = self._connections.get(sid)
		return connection.state if connection else ConnectionState.DISCONNECTED

	def sid_for(self, profile_id: str) -> Optional[str]:
		return self._profile_sids.get(str(profile_id))

	def is_online(self, profile_id: str) -> bool:
		return str(profile_id) in self._profile_sids

	def rooms_of(self, sid: str) -> Set[str]:
		connection = self._connections.get(sid)
		return set(connection.rooms) if connection else set()

	def members(self, room: str) -> Set[str]:
		"""Profile ids currently in ``room``."""
		members: Set[str] = set()
		for sid in self._rooms.get(room, ()):
			connection = self._connections.get(sid)
			if connection is not None and connection.identity is not None:
				members.add(connection.identity.profile_id)
		return members

	def connection_stats(self) -> Dict[str, Any]:
		authenticated = sum(1 for connection in self._connections.values() if connection.is_authenticated)
		return {
			"totalConnections": len(self._connections),
			"authenticatedConnections": authenticated,
			"onlineProfiles": len(self._profile_sids),
			"rooms": [
				{"room": room, "memberCount": len(self.members(room))}
				for room in sorted(self._rooms)
			],
		}


_ENGINE = PresenceEngine()


def get_engine() -> PresenceEngine:
	return _ENGINE


def set_engine(engine: PresenceEngine) -> None:
	global _ENGINE
	_ENGINE = engine
