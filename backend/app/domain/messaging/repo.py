"""Persistence for conversations and messages."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.domain.messaging.exceptions import storage_errors
from app.domain.messaging.models import (
	Conversation,
	ConversationSettings,
	Message,
	Participant,
	ReadReceipt,
	SenderSnapshot,
)
from app.domain.profiles.models import ProfileRef, parse_role
from app.infra.postgres import get_pool

log = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
	conversation_id TEXT PRIMARY KEY,
	conversation_type TEXT NOT NULL,
	title TEXT,
	description TEXT,
	settings JSONB NOT NULL DEFAULT '{}'::jsonb,
	status TEXT NOT NULL DEFAULT 'active',
	direct_key TEXT,
	last_message_at TIMESTAMPTZ,
	last_message_id TEXT,
	message_count INTEGER NOT NULL DEFAULT 0,
	created_at TIMESTAMPTZ NOT NULL,
	updated_at TIMESTAMPTZ NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS conversations_active_direct_key
	ON conversations (direct_key)
	WHERE conversation_type = 'direct' AND status = 'active';
CREATE TABLE IF NOT EXISTS conversation_participants (
	conversation_id TEXT NOT NULL REFERENCES conversations (conversation_id),
	profile_id TEXT NOT NULL,
	role TEXT NOT NULL,
	position INTEGER NOT NULL,
	joined_at TIMESTAMPTZ NOT NULL,
	is_active BOOLEAN NOT NULL DEFAULT TRUE,
	last_seen_at TIMESTAMPTZ,
	PRIMARY KEY (conversation_id, profile_id, role)
);
CREATE INDEX IF NOT EXISTS conversation_participants_profile
	ON conversation_participants (profile_id, role) WHERE is_active;
CREATE TABLE IF NOT EXISTS messages (
	message_id TEXT PRIMARY KEY,
	conversation_id TEXT NOT NULL,
	sender_id TEXT NOT NULL,
	sender_role TEXT NOT NULL,
	sender_name TEXT NOT NULL,
	sender_email TEXT NOT NULL,
	receiver_id TEXT NOT NULL,
	receiver_role TEXT NOT NULL,
	content TEXT NOT NULL,
	message_type TEXT NOT NULL DEFAULT 'text',
	priority TEXT NOT NULL DEFAULT 'normal',
	status TEXT NOT NULL DEFAULT 'sent',
	is_read BOOLEAN NOT NULL DEFAULT FALSE,
	read_by JSONB NOT NULL DEFAULT '[]'::jsonb,
	is_archived BOOLEAN NOT NULL DEFAULT FALSE,
	archived_at TIMESTAMPTZ,
	reply_to TEXT,
	requires_approval BOOLEAN NOT NULL DEFAULT FALSE,
	is_approved BOOLEAN NOT NULL DEFAULT TRUE,
	approved_by TEXT,
	approved_at TIMESTAMPTZ,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS messages_conversation_created ON messages (conversation_id, created_at DESC);
CREATE INDEX IF NOT EXISTS messages_receiver_unread ON messages (receiver_id, receiver_role) WHERE NOT is_read;
CREATE INDEX IF NOT EXISTS messages_sender ON messages (sender_id, sender_role);
"""

_MESSAGE_COLUMNS = """
	message_id, conversation_id, sender_id, sender_role, sender_name, sender_email,
	receiver_id, receiver_role, content, message_type, priority, status, is_read, read_by,
	is_archived, archived_at, reply_to, requires_approval, is_approved, approved_by,
	approved_at, created_at
"""


# Direction-aware token used to match (sender, receiver) pairs in SQL and memory.
def _pair_token(sender: ProfileRef, receiver: ProfileRef) -> str:
	return f"{sender}>{receiver}"


def _pair_tokens(pairs: Iterable[Tuple[ProfileRef, ProfileRef]]) -> List[str]:
	tokens: list[str] = []
	for one, two in pairs:
		tokens.append(_pair_token(one, two))
		tokens.append(_pair_token(two, one))
	return tokens


def _sort_newest(messages: Iterable[Message]) -> List[Message]:
	return sorted(messages, key=lambda m: (m.created_at, m.message_id), reverse=True)


class _InMemoryStore:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._conversations: Dict[str, Conversation] = {}
		self._messages: Dict[str, Message] = {}

	async def reset(self) -> None:
		async with self._lock:
			self._conversations.clear()
			self._messages.clear()

	def _active_direct(self, direct_key: str) -> Optional[Conversation]:
		for conversation in self._conversations.values():
			if conversation.status == "active" and conversation.direct_key == direct_key:
				return conversation
		return None

	async def create_conversation(self, conversation: Conversation) -> Tuple[Conversation, bool]:
		async with self._lock:
			direct_key = conversation.direct_key
			if direct_key is not None:
				existing = self._active_direct(direct_key)
				if existing is not None:
					return copy.deepcopy(existing), False
			self._conversations[conversation.conversation_id] = copy.deepcopy(conversation)
			return copy.deepcopy(conversation), True

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		async with self._lock:
			conversation = self._conversations.get(conversation_id)
			return copy.deepcopy(conversation) if conversation else None

	async def save_participants(self, conversation: Conversation) -> None:
		async with self._lock:
			stored = self._conversations.get(conversation.conversation_id)
			if stored is None:
				return
			stored.participants = copy.deepcopy(conversation.participants)
			stored.updated_at = conversation.updated_at

	async def touch_last_seen(self, conversation_id: str, ref: ProfileRef, now: datetime) -> None:
		async with self._lock:
			stored = self._conversations.get(conversation_id)
			if stored is not None:
				stored.touch_last_seen(ref, now)

	async def list_conversations_for(
		self,
		ref: ProfileRef,
		*,
		conversation_type: Optional[str],
		include_archived: bool,
		offset: int,
		limit: int,
	) -> Tuple[List[Conversation], int]:
		async with self._lock:
			matches = [
				conversation
				for conversation in self._conversations.values()
				if conversation.is_active_participant(ref)
				and conversation.status != "deleted"
				and (include_archived or conversation.status == "active")
				and (conversation_type is None or conversation.conversation_type == conversation_type)
			]
			matches.sort(key=lambda c: (c.last_message_at or c.updated_at, c.conversation_id), reverse=True)
			return copy.deepcopy(matches[offset : offset + limit]), len(matches)

	async def append_message(self, message: Message) -> Message:
		async with self._lock:
			self._messages[message.message_id] = copy.deepcopy(message)
			conversation = self._conversations.get(message.conversation_id)
			if conversation is not None:
				conversation.record_message(message)
			return copy.deepcopy(message)

	async def get_message(self, message_id: str) -> Optional[Message]:
		async with self._lock:
			message = self._messages.get(message_id)
			return copy.deepcopy(message) if message else None

	async def list_messages(
		self,
		*,
		conversation_ids: Sequence[str],
		pairs: Sequence[Tuple[ProfileRef, ProfileRef]],
		visible_to: Optional[ProfileRef],
		include_archived: bool,
		offset: int,
		limit: int,
	) -> List[Message]:
		ids = set(conversation_ids)
		tokens = set(_pair_tokens(pairs))
		async with self._lock:
			matches = [
				message
				for message in self._messages.values()
				if (message.conversation_id in ids or _pair_token(message.sender.ref, message.receiver) in tokens)
				and (include_archived or not message.is_archived)
				and (visible_to is None or message.visible_in_inbox(visible_to))
			]
			return copy.deepcopy(_sort_newest(matches)[offset : offset + limit])

	async def list_messages_involving(self, ref: ProfileRef) -> List[Message]:
		async with self._lock:
			return copy.deepcopy(_sort_newest(m for m in self._messages.values() if m.involves(ref)))

	async def list_pending_approval(self, receiver: ProfileRef, *, offset: int, limit: int) -> List[Message]:
		async with self._lock:
			pending = [
				message
				for message in self._messages.values()
				if message.is_addressed_to(receiver) and message.requires_approval and not message.is_approved
			]
			return copy.deepcopy(_sort_newest(pending)[offset : offset + limit])

	async def record_read(self, message_id: str, reader: ProfileRef, now: datetime) -> bool:
		async with self._lock:
			message = self._messages.get(message_id)
			if message is None:
				return False
			return message.record_read(reader, now)

	async def mark_seen(
		self,
		reader: ProfileRef,
		*,
		conversation_ids: Sequence[str],
		senders: Sequence[ProfileRef],
		now: datetime,
	) -> int:
		ids = set(conversation_ids)
		sender_set = set(senders)
		updated = 0
		async with self._lock:
			for message in self._messages.values():
				if not message.is_addressed_to(reader) or message.is_read or not message.is_approved:
					continue
				if message.conversation_id not in ids and message.sender.ref not in sender_set:
					continue
				if message.record_read(reader, now):
					updated += 1
		return updated

	async def set_approved(self, message_id: str, approver: ProfileRef, now: datetime) -> bool:
		async with self._lock:
			message = self._messages.get(message_id)
			return message.approve(approver, now) if message else False

	async def set_archived(self, message_id: str, now: datetime) -> bool:
		async with self._lock:
			message = self._messages.get(message_id)
			return message.archive(now) if message else False

	async def distinct_message_conversation_ids(self) -> List[str]:
		async with self._lock:
			return sorted({message.conversation_id for message in self._messages.values()})

	async def rewrite_conversation_id(self, old_id: str, new_id: str) -> int:
		moved = 0
		async with self._lock:
			for message in self._messages.values():
				if message.conversation_id == old_id:
					message.conversation_id = new_id
					moved += 1
		return moved


_MEMORY_STORE = _InMemoryStore()


async def reset_memory_store() -> None:
	await _MEMORY_STORE.reset()


class MessagingRepository:
	"""Repository backed by asyncpg with an in-memory fallback."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool = None
		self._schema_ready = False

	async def _pool_or_none(self):
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			pool = await get_pool()
		except AssertionError:
			pool = None
		except (OSError, ConnectionError) as exc:
			log.warning("messaging_pool_unavailable", extra={"error": str(exc)})
			pool = None
		self._pool = pool
		if pool is not None and not self._schema_ready:
			with storage_errors("ensure_schema"):
				async with pool.acquire() as conn:
					await conn.execute(_SCHEMA)
			self._schema_ready = True
		return pool

	async def create_conversation(self, conversation: Conversation) -> Tuple[Conversation, bool]:
		"""Insert ``conversation``; for direct ones, return the active duplicate instead.

		Uniqueness of the active direct pair is enforced by a partial unique index,
		so concurrent creators converge on one row.
		"""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.create_conversation(conversation)
		with storage_errors("create_conversation"):
			async with pool.acquire() as conn:
				async with conn.transaction():
					row = await conn.fetchrow(
						"""
						INSERT INTO conversations (
							conversation_id, conversation_type, title, description, settings,
							status, direct_key, message_count, created_at, updated_at
						) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, 0, $8, $9)
						ON CONFLICT (direct_key) WHERE conversation_type = 'direct' AND status = 'active'
						DO NOTHING
						RETURNING conversation_id
						""",
						conversation.conversation_id,
						conversation.conversation_type,
						conversation.title,
						conversation.description,
						json.dumps(conversation.settings.to_dict()),
						conversation.status,
						conversation.direct_key,
						conversation.created_at,
						conversation.updated_at,
					)
					if row is None:
						existing = await self._fetch_conversation(conn, "direct_key = $1 AND status = 'active'", conversation.direct_key)
						if existing is None:
							raise RuntimeError("direct conversation conflict without a surviving row")
						return existing, False
					await self._upsert_participants(conn, conversation)
					return conversation, True

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get_conversation(conversation_id)
		with storage_errors("get_conversation"):
			async with pool.acquire() as conn:
				return await self._fetch_conversation(conn, "conversation_id = $1", conversation_id)

	async def save_participants(self, conversation: Conversation) -> None:
		pool = await self._pool_or_none()
		if pool is None:
			await _MEMORY_STORE.save_participants(conversation)
			return
		with storage_errors("save_participants"):
			async with pool.acquire() as conn:
				async with conn.transaction():
					await self._upsert_participants(conn, conversation)
					await conn.execute(
						"UPDATE conversations SET updated_at = $2 WHERE conversation_id = $1",
						conversation.conversation_id,
						conversation.updated_at,
					)

	async def touch_last_seen(self, conversation_id: str, ref: ProfileRef, now: datetime) -> None:
		pool = await self._pool_or_none()
		if pool is None:
			await _MEMORY_STORE.touch_last_seen(conversation_id, ref, now)
			return
		with storage_errors("touch_last_seen"):
			async with pool.acquire() as conn:
				await conn.execute(
					"""
					UPDATE conversation_participants SET last_seen_at = $4
					WHERE conversation_id = $1 AND profile_id = $2 AND role = $3
					""",
					conversation_id,
					ref.profile_id,
					ref.role.value,
					now,
				)

	async def list_conversations_for(
		self,
		ref: ProfileRef,
		*,
		conversation_type: Optional[str] = None,
		include_archived: bool = False,
		offset: int = 0,
		limit: int = 20,
	) -> Tuple[List[Conversation], int]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_conversations_for(
				ref,
				conversation_type=conversation_type,
				include_archived=include_archived,
				offset=offset,
				limit=limit,
			)
		where = """
			FROM conversations c
			JOIN conversation_participants p ON p.conversation_id = c.conversation_id
			WHERE p.profile_id = $1 AND p.role = $2 AND p.is_active
				AND c.status <> 'deleted'
				AND ($3::text IS NULL OR c.conversation_type = $3)
				AND ($4 OR c.status = 'active')
		"""
		params = [ref.profile_id, ref.role.value, conversation_type, include_archived]
		with storage_errors("list_conversations"):
			async with pool.acquire() as conn:
				total = await conn.fetchval("SELECT COUNT(*) " + where, *params)
				rows = await conn.fetch(
					"SELECT c.* "
					+ where
					+ " ORDER BY COALESCE(c.last_message_at, c.updated_at) DESC, c.conversation_id DESC OFFSET $5 LIMIT $6",
					*params,
					offset,
					limit,
				)
				participants = await self._fetch_participants(conn, [row["conversation_id"] for row in rows])
		conversations = [self._row_to_conversation(row, participants.get(row["conversation_id"], [])) for row in rows]
		return conversations, int(total or 0)

	async def append_message(self, message: Message) -> Message:
		"""Persist ``message`` and bump the owning conversation's counters."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.append_message(message)
		with storage_errors("append_message"):
			async with pool.acquire() as conn:
				async with conn.transaction():
					await conn.execute(
						f"""
						INSERT INTO messages ({_MESSAGE_COLUMNS})
						VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14::jsonb,$15,$16,$17,$18,$19,$20,$21,$22)
						""",
						message.message_id,
						message.conversation_id,
						message.sender.profile_id,
						message.sender.role.value,
						message.sender.name,
						message.sender.email,
						message.receiver_id,
						message.receiver_role.value,
						message.content,
						message.message_type,
						message.priority,
						message.status,
						message.is_read,
						json.dumps([receipt.to_dict() for receipt in message.read_by]),
						message.is_archived,
						message.archived_at,
						message.reply_to,
						message.requires_approval,
						message.is_approved,
						message.approved_by,
						message.approved_at,
						message.created_at,
					)
					# Legacy role-pair keys have no conversation row; zero rows is fine.
					await conn.execute(
						"""
						UPDATE conversations
						SET last_message_at = $2, last_message_id = $3,
							message_count = message_count + 1, updated_at = $2
						WHERE conversation_id = $1
						""",
						message.conversation_id,
						message.created_at,
						message.message_id,
					)
		return message

	async def get_message(self, message_id: str) -> Optional[Message]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get_message(message_id)
		with storage_errors("get_message"):
			async with pool.acquire() as conn:
				row = await conn.fetchrow(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = $1", message_id)
		return self._row_to_message(row) if row else None

	async def list_messages(
		self,
		*,
		conversation_ids: Sequence[str] = (),
		pairs: Sequence[Tuple[ProfileRef, ProfileRef]] = (),
		visible_to: Optional[ProfileRef] = None,
		include_archived: bool = False,
		offset: int = 0,
		limit: int = 50,
	) -> List[Message]:
		"""Messages in any of ``conversation_ids`` or exchanged within ``pairs``, newest first."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_messages(
				conversation_ids=conversation_ids,
				pairs=pairs,
				visible_to=visible_to,
				include_archived=include_archived,
				offset=offset,
				limit=limit,
			)
		# The visibility predicate mirrors Message.visible_in_inbox.
		query = f"""
			SELECT {_MESSAGE_COLUMNS} FROM messages
			WHERE (
				conversation_id = ANY($1::text[])
				OR (sender_role || ':' || sender_id || '>' || receiver_role || ':' || receiver_id) = ANY($2::text[])
			)
			AND ($3 OR NOT is_archived)
			AND ($4::text IS NULL OR is_approved OR (sender_role = $4 AND sender_id = $5::text))
			ORDER BY created_at DESC, message_id DESC
			OFFSET $6 LIMIT $7
		"""
		with storage_errors("list_messages"):
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					query,
					list(conversation_ids),
					_pair_tokens(pairs),
					include_archived,
					visible_to.role.value if visible_to else None,
					visible_to.profile_id if visible_to else None,
					offset,
					limit,
				)
		return [self._row_to_message(row) for row in rows]

	async def list_messages_involving(self, ref: ProfileRef) -> List[Message]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_messages_involving(ref)
		with storage_errors("list_messages_involving"):
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					f"""
					SELECT {_MESSAGE_COLUMNS} FROM messages
					WHERE (sender_id = $1 AND sender_role = $2) OR (receiver_id = $1 AND receiver_role = $2)
					ORDER BY created_at DESC, message_id DESC
					""",
					ref.profile_id,
					ref.role.value,
				)
		return [self._row_to_message(row) for row in rows]

	async def list_pending_approval(self, receiver: ProfileRef, *, offset: int = 0, limit: int = 50) -> List[Message]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_pending_approval(receiver, offset=offset, limit=limit)
		with storage_errors("list_pending_approval"):
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					f"""
					SELECT {_MESSAGE_COLUMNS} FROM messages
					WHERE receiver_id = $1 AND receiver_role = $2 AND requires_approval AND NOT is_approved
					ORDER BY created_at DESC, message_id DESC
					OFFSET $3 LIMIT $4
					""",
					receiver.profile_id,
					receiver.role.value,
					offset,
					limit,
				)
		return [self._row_to_message(row) for row in rows]

	async def record_read(self, message_id: str, reader: ProfileRef, now: datetime, *, is_receiver: bool) -> bool:
		"""Atomically append a read receipt; False when ``reader`` already read it."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.record_read(message_id, reader, now)
		receipt = ReadReceipt(profile_id=reader.profile_id, role=reader.role, read_at=now)
		probe = [{"profile_id": reader.profile_id, "role": reader.role.value}]
		with storage_errors("record_read"):
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					UPDATE messages
					SET read_by = read_by || $2::jsonb,
						is_read = is_read OR $3,
						status = CASE WHEN $3 THEN 'read' ELSE status END
					WHERE message_id = $1 AND NOT (read_by @> $4::jsonb)
					RETURNING message_id
					""",
					message_id,
					json.dumps([receipt.to_dict()]),
					is_receiver,
					json.dumps(probe),
				)
		return row is not None

	async def mark_seen(
		self,
		reader: ProfileRef,
		*,
		conversation_ids: Sequence[str] = (),
		senders: Sequence[ProfileRef] = (),
		now: datetime,
	) -> int:
		"""Mark unread, approved messages addressed to ``reader`` in scope as read."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.mark_seen(reader, conversation_ids=conversation_ids, senders=senders, now=now)
		receipt = json.dumps([{"profile_id": reader.profile_id, "role": reader.role.value, "read_at": now.isoformat()}])
		with storage_errors("mark_seen"):
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"""
					UPDATE messages
					SET is_read = TRUE, status = 'read', read_by = read_by || $3::jsonb
					WHERE receiver_id = $1 AND receiver_role = $2 AND NOT is_read AND is_approved
						AND (conversation_id = ANY($4::text[]) OR (sender_role || ':' || sender_id) = ANY($5::text[]))
					RETURNING message_id
					""",
					reader.profile_id,
					reader.role.value,
					receipt,
					list(conversation_ids),
					[str(sender) for sender in senders],
				)
		return len(rows)

	async def set_approved(self, message_id: str, approver: ProfileRef, now: datetime) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.set_approved(message_id, approver, now)
		with storage_errors("approve_message"):
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					UPDATE messages SET is_approved = TRUE, approved_by = $2, approved_at = $3
					WHERE message_id = $1 AND NOT is_approved
					RETURNING message_id
					""",
					message_id,
					approver.profile_id,
					now,
				)
		return row is not None

	async def set_archived(self, message_id: str, now: datetime) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.set_archived(message_id, now)
		with storage_errors("archive_message"):
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					UPDATE messages SET is_archived = TRUE, archived_at = $2
					WHERE message_id = $1 AND NOT is_archived
					RETURNING message_id
					""",
					message_id,
					now,
				)
		return row is not None

	async def distinct_message_conversation_ids(self) -> List[str]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.distinct_message_conversation_ids()
		with storage_errors("scan_conversation_ids"):
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"SELECT DISTINCT conversation_id FROM messages WHERE conversation_id LIKE '%|%' ORDER BY conversation_id"
				)
		return [str(row["conversation_id"]) for row in rows]

	async def rewrite_conversation_id(self, old_id: str, new_id: str) -> int:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.rewrite_conversation_id(old_id, new_id)
		with storage_errors("rewrite_conversation_id"):
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"UPDATE messages SET conversation_id = $2 WHERE conversation_id = $1 RETURNING message_id",
					old_id,
					new_id,
				)
		return len(rows)

	async def _upsert_participants(self, conn, conversation: Conversation) -> None:
		for position, participant in enumerate(conversation.participants):
			await conn.execute(
				"""
				INSERT INTO conversation_participants (
					conversation_id, profile_id, role, position, joined_at, is_active, last_seen_at
				) VALUES ($1, $2, $3, $4, $5, $6, $7)
				ON CONFLICT (conversation_id, profile_id, role)
				DO UPDATE SET is_active = EXCLUDED.is_active, last_seen_at = EXCLUDED.last_seen_at
				""",
				conversation.conversation_id,
				participant.profile_id,
				participant.role.value,
				position,
				participant.joined_at,
				participant.is_active,
				participant.last_seen_at,
			)

	async def _fetch_conversation(self, conn, predicate: str, value) -> Optional[Conversation]:
		row = await conn.fetchrow(f"SELECT * FROM conversations WHERE {predicate}", value)
		if row is None:
			return None
		participants = await self._fetch_participants(conn, [row["conversation_id"]])
		return self._row_to_conversation(row, participants.get(row["conversation_id"], []))

	async def _fetch_participants(self, conn, conversation_ids: List[str]) -> Dict[str, List[Participant]]:
		if not conversation_ids:
			return {}
		rows = await conn.fetch(
			"""
			SELECT conversation_id, profile_id, role, joined_at, is_active, last_seen_at
			FROM conversation_participants
			WHERE conversation_id = ANY($1::text[])
			ORDER BY conversation_id, position
			""",
			conversation_ids,
		)
		grouped: Dict[str, List[Participant]] = {}
		for row in rows:
			grouped.setdefault(row["conversation_id"], []).append(
				Participant(
					profile_id=str(row["profile_id"]),
					role=parse_role(row["role"]),
					joined_at=row["joined_at"],
					is_active=bool(row["is_active"]),
					last_seen_at=row["last_seen_at"],
				)
			)
		return grouped

	def _row_to_conversation(self, row, participants: List[Participant]) -> Conversation:
		settings_raw = row["settings"]
		if isinstance(settings_raw, str):
			settings_raw = json.loads(settings_raw) if settings_raw else {}
		return Conversation(
			conversation_id=str(row["conversation_id"]),
			participants=participants,
			conversation_type=row["conversation_type"],
			title=row["title"],
			description=row["description"],
			settings=ConversationSettings.from_dict(settings_raw),
			status=row["status"],
			last_message_at=row["last_message_at"],
			last_message_id=row["last_message_id"],
			message_count=int(row["message_count"] or 0),
			created_at=row["created_at"],
			updated_at=row["updated_at"],
		)

	def _row_to_message(self, row) -> Message:
		read_by_raw = row["read_by"]
		if isinstance(read_by_raw, str):
			read_by_raw = json.loads(read_by_raw) if read_by_raw else []
		receipts = [
			ReadReceipt(
				profile_id=str(item["profile_id"]),
				role=parse_role(item["role"]),
				read_at=datetime.fromisoformat(item["read_at"]),
			)
			for item in read_by_raw or []
		]
		return Message(
			message_id=str(row["message_id"]),
			conversation_id=str(row["conversation_id"]),
			sender=SenderSnapshot(
				profile_id=str(row["sender_id"]),
				role=parse_role(row["sender_role"]),
				name=row["sender_name"],
				email=row["sender_email"],
			),
			receiver_id=str(row["receiver_id"]),
			receiver_role=parse_role(row["receiver_role"]),
			content=row["content"],
			message_type=row["message_type"],
			priority=row["priority"],
			status=row["status"],
			is_read=bool(row["is_read"]),
			read_by=receipts,
			is_archived=bool(row["is_archived"]),
			archived_at=row["archived_at"],
			reply_to=row["reply_to"],
			requires_approval=bool(row["requires_approval"]),
			is_approved=bool(row["is_approved"]),
			approved_by=row["approved_by"],
			approved_at=row["approved_at"],
			created_at=row["created_at"],
		)
