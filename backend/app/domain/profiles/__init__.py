"""Profile identity exports."""

from .models import (
	UNKNOWN_DISPLAY_NAME,
	UNKNOWN_EMAIL,
	InvalidRole,
	ProfileRecord,
	ProfileRef,
	ResolvedProfile,
	Role,
	parse_role,
	parse_role_or_none,
)
from .resolver import IdentityResolver

__all__ = [
	"IdentityResolver",
	"InvalidRole",
	"ProfileRecord",
	"ProfileRef",
	"ResolvedProfile",
	"Role",
	"UNKNOWN_DISPLAY_NAME",
	"UNKNOWN_EMAIL",
	"parse_role",
	"parse_role_or_none",
]
