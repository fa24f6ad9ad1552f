"""Who may message whom.

The matrix is directional: an Admin may write to an Employee while the
reverse is refused for real-time sends and only persisted behind approval.
"""

from __future__ import annotations

from typing import Iterable

from app.domain.messaging.exceptions import MessagingNotAllowed
from app.domain.profiles.models import ProfileRef, Role, parse_role_or_none

_ALLOWED: dict[Role, frozenset[Role]] = {
	Role.ADMIN: frozenset({Role.ADMIN, Role.HR, Role.EMPLOYEE}),
	Role.HR: frozenset({Role.ADMIN, Role.HR, Role.EMPLOYEE}),
	Role.EMPLOYEE: frozenset({Role.HR, Role.EMPLOYEE}),
}


def can_message(sender_role: object, receiver_role: object) -> bool:
	sender = parse_role_or_none(sender_role)
	receiver = parse_role_or_none(receiver_role)
	if sender is None or receiver is None:
		return False
	return receiver in _ALLOWED.get(sender, frozenset())


def requires_approval(sender_role: object, receiver_role: object) -> bool:
	"""Employee -> Admin messages are stored but gated until an admin approves."""
	sender = parse_role_or_none(sender_role)
	receiver = parse_role_or_none(receiver_role)
	return sender is Role.EMPLOYEE and receiver is Role.ADMIN


def ensure_can_message_all(sender: ProfileRef, recipients: Iterable[ProfileRef]) -> None:
	"""Reject the whole send if any recipient is unreachable for the sender's role."""
	for recipient in recipients:
		if recipient == sender:
			continue
		if not can_message(sender.role, recipient.role):
			raise MessagingNotAllowed(sender.role.value, recipient.role.value)
