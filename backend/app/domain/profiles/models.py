"""Role-tagged profile identities."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

UNKNOWN_DISPLAY_NAME = "Unknown User"
UNKNOWN_EMAIL = "unknown@example.com"


class Role(str, Enum):
	ADMIN = "Admin"
	HR = "HR"
	EMPLOYEE = "Employee"

	@property
	def rank(self) -> int:
		return _ROLE_RANK[self]

	@property
	def room(self) -> str:
		return _ROLE_ROOMS[self]


_ROLE_RANK = {Role.ADMIN: 0, Role.HR: 1, Role.EMPLOYEE: 2}
_ROLE_ROOMS = {Role.ADMIN: "admin_room", Role.HR: "hr_room", Role.EMPLOYEE: "employee_room"}
_ROLE_LOOKUP = {role.value.lower(): role for role in Role}


class InvalidRole(ValueError):
	def __init__(self, value: object) -> None:
		super().__init__(f"invalid_role:{value}")
		self.value = value


def parse_role(value: object) -> Role:
	"""Parse a role tag case-insensitively (``hr`` -> ``HR``)."""
	if isinstance(value, Role):
		return value
	if value is None:
		raise InvalidRole(value)
	try:
		return _ROLE_LOOKUP[str(value).strip().lower()]
	except KeyError as exc:
		raise InvalidRole(value) from exc


def parse_role_or_none(value: object) -> Optional[Role]:
	try:
		return parse_role(value)
	except InvalidRole:
		return None


@dataclass(frozen=True, slots=True)
class ProfileRef:
	"""A profile id tagged with the collection it lives in."""

	role: Role
	profile_id: str

	@classmethod
	def admin(cls, profile_id: str) -> "ProfileRef":
		return cls(Role.ADMIN, str(profile_id))

	@classmethod
	def hr(cls, profile_id: str) -> "ProfileRef":
		return cls(Role.HR, str(profile_id))

	@classmethod
	def employee(cls, profile_id: str) -> "ProfileRef":
		return cls(Role.EMPLOYEE, str(profile_id))

	@classmethod
	def of(cls, role: object, profile_id: str) -> "ProfileRef":
		return cls(parse_role(role), str(profile_id))

	@property
	def sort_key(self) -> tuple[int, str]:
		return (self.role.rank, self.profile_id)

	def to_dict(self) -> dict:
		return {"profile_id": self.profile_id, "role": self.role.value}

	def __str__(self) -> str:
		return f"{self.role.value}:{self.profile_id}"


@dataclass(slots=True)
class ProfileRecord:
	"""Row shape shared by the admins, hrs and employees collections."""

	profile_id: str
	role: Role
	auth_id: Optional[str]
	display_name: str
	email: Optional[str]
	department: Optional[str] = None

	@property
	def ref(self) -> ProfileRef:
		return ProfileRef(self.role, self.profile_id)


@dataclass(frozen=True, slots=True)
class ResolvedProfile:
	profile_id: str
	role: Optional[Role]
	display_name: str
	email: str
	auth_id: Optional[str] = None
	department: Optional[str] = None

	@classmethod
	def from_record(cls, record: ProfileRecord) -> "ResolvedProfile":
		return cls(
			profile_id=record.profile_id,
			role=record.role,
			display_name=record.display_name or UNKNOWN_DISPLAY_NAME,
			email=record.email or UNKNOWN_EMAIL,
			auth_id=record.auth_id,
			department=record.department,
		)

	@classmethod
	def unknown(cls, identifier: str) -> "ResolvedProfile":
		return cls(
			profile_id=str(identifier),
			role=None,
			display_name=UNKNOWN_DISPLAY_NAME,
			email=UNKNOWN_EMAIL,
		)

	@property
	def is_unknown(self) -> bool:
		return self.role is None

	@property
	def ref(self) -> Optional[ProfileRef]:
		if self.role is None:
			return None
		return ProfileRef(self.role, self.profile_id)

	def to_dict(self) -> dict:
		return {
			"profile_id": self.profile_id,
			"role": self.role.value if self.role else None,
			"display_name": self.display_name,
			"email": self.email,
			"department": self.department,
		}
