"""Deterministic keys for two-party (legacy role-pair) conversations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from app.domain.messaging.exceptions import InvalidParticipants
from app.domain.profiles.models import InvalidRole, ProfileRef, parse_role

_PAIR_SEPARATOR = "|"
_PART_SEPARATOR = ":"


@dataclass(frozen=True, slots=True)
class LegacyConversationKey:
	"""Canonical representation of a role-pair conversation.

	Participants are ordered by (role rank, profile id): same-role pairs sort
	lexicographically so either side produces the same key, and mixed-role
	pairs always put Admin before HR before Employee.
	"""

	first: ProfileRef
	second: ProfileRef

	@classmethod
	def from_participants(cls, one: ProfileRef, two: ProfileRef) -> "LegacyConversationKey":
		if one == two:
			raise InvalidParticipants(message="a conversation needs two distinct profiles")
		ordered = sorted((one, two), key=lambda ref: ref.sort_key)
		return cls(first=ordered[0], second=ordered[1])

	@classmethod
	def parse(cls, value: str) -> "LegacyConversationKey":
		"""Parse a stored key in any order; raises ValueError when malformed."""
		parts = str(value).split(_PAIR_SEPARATOR)
		if len(parts) != 2:
			raise ValueError(f"malformed conversation key: {value!r}")
		refs = []
		for part in parts:
			role_text, sep, profile_id = part.partition(_PART_SEPARATOR)
			if not sep or not profile_id:
				raise ValueError(f"malformed conversation key: {value!r}")
			try:
				refs.append(ProfileRef(parse_role(role_text), profile_id))
			except InvalidRole as exc:
				raise ValueError(f"malformed conversation key: {value!r}") from exc
		return cls.from_participants(refs[0], refs[1])

	@property
	def conversation_id(self) -> str:
		return _PAIR_SEPARATOR.join(str(ref) for ref in (self.first, self.second))

	def participants(self) -> Tuple[ProfileRef, ProfileRef]:
		return (self.first, self.second)

	def peer_of(self, ref: ProfileRef) -> ProfileRef:
		if ref == self.first:
			return self.second
		if ref == self.second:
			return self.first
		raise InvalidParticipants(message=f"{ref} is not part of {self.conversation_id}")


def derive_conversation_key(one: ProfileRef, two: ProfileRef) -> str:
	return LegacyConversationKey.from_participants(one, two).conversation_id


def is_legacy_key(value: str) -> bool:
	try:
		LegacyConversationKey.parse(value)
	except (ValueError, InvalidParticipants):
		return False
	return True


def normalize_conversation_key(value: str) -> str:
	"""Return the canonical form of a stored key (idempotent)."""
	return LegacyConversationKey.parse(value).conversation_id
