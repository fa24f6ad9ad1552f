"""Domain-level exceptions for conversations, messages and presence."""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Iterator

import asyncpg


class MessagingError(Exception):
	"""Base class for messaging errors.

	``reason`` is the machine-readable code surfaced to clients; ``status_code``
	is the HTTP equivalent used by the API layer.
	"""

	reason: str = "unknown"
	status_code: int = 400

	def __init__(self, reason: str | None = None, message: str | None = None) -> None:
		super().__init__(message or reason or self.reason)
		if reason:
			self.reason = reason
		self.message = message or self.reason

	def to_detail(self) -> dict:
		return {"reason": self.reason, "message": self.message}


class NotFound(MessagingError):
	reason = "not_found"
	status_code = 404


class ConversationNotFound(NotFound):
	reason = "conversation_not_found"


class MessageNotFound(NotFound):
	reason = "message_not_found"


class ProfileNotFound(NotFound):
	reason = "profile_not_found"


class Forbidden(MessagingError):
	reason = "forbidden"
	status_code = 403


class NotParticipant(Forbidden):
	reason = "not_participant"


class MessagingNotAllowed(Forbidden):
	reason = "messaging_not_allowed"

	def __init__(self, sender_role: str, receiver_role: str) -> None:
		super().__init__(message=f"{sender_role} cannot message {receiver_role}")
		self.sender_role = sender_role
		self.receiver_role = receiver_role

	def to_detail(self) -> dict:
		detail = super().to_detail()
		detail["sender_role"] = self.sender_role
		detail["receiver_role"] = self.receiver_role
		return detail


class ParticipantsNotAllowed(Forbidden):
	reason = "participants_not_allowed"


class ApprovalNotAllowed(Forbidden):
	reason = "approval_not_allowed"


class ValidationFailed(MessagingError):
	reason = "validation_error"
	status_code = 422


class InvalidParticipants(ValidationFailed):
	reason = "invalid_participants"


class MissingField(ValidationFailed):
	reason = "missing_field"

	def __init__(self, field: str) -> None:
		super().__init__(message=f"{field} is required")
		self.field = field

	def to_detail(self) -> dict:
		detail = super().to_detail()
		detail["field"] = self.field
		return detail


class AuthFailed(MessagingError):
	reason = "auth_failed"
	status_code = 401


class StorageError(MessagingError):
	reason = "storage_error"
	status_code = 503


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
	"""Re-raise driver and connection failures as StorageError."""
	try:
		yield
	except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
		raise StorageError(message=f"{operation} failed") from exc
