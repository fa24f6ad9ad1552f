"""Presence: connection lifecycle, rooms and real-time fan-out."""

from .engine import (
	COMPANY_WIDE_ROOM,
	ConnectionState,
	PresenceEngine,
	department_room,
	get_engine,
	personal_room,
	set_engine,
)

__all__ = [
	"COMPANY_WIDE_ROOM",
	"ConnectionState",
	"PresenceEngine",
	"department_room",
	"get_engine",
	"personal_room",
	"set_engine",
]
