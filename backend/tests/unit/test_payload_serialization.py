import json
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import ulid

from app.domain.presence.serialization import CIRCULAR, safe_payload
from app.domain.profiles.models import ProfileRef, Role


@dataclass
class _Point:
	x: int
	y: int


class _Opaque:
	def __str__(self) -> str:
		return "opaque"


class _Broken:
	def __str__(self) -> str:
		raise RuntimeError("no")


def test_plain_payload_passes_through():
	payload = {"content": "hi", "count": 2, "nested": {"ok": True, "items": [1, 2]}}
	assert safe_payload(payload) == payload


def test_domain_values_are_converted():
	when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
	message_id = ulid.new()
	request_id = uuid.uuid4()
	cleaned = safe_payload(
		{
			"createdAt": when,
			"messageId": message_id,
			"requestId": request_id,
			"role": Role.HR,
			"amount": Decimal("1.5"),
			"tags": {"a"},
			"point": _Point(1, 2),
			"ref": ProfileRef.hr("h1"),
		}
	)
	assert cleaned["createdAt"] == when.isoformat()
	assert cleaned["messageId"] == str(message_id)
	assert cleaned["requestId"] == str(request_id)
	assert cleaned["role"] == "HR"
	assert cleaned["amount"] == 1.5
	assert cleaned["tags"] == ["a"]
	assert cleaned["point"] == {"x": 1, "y": 2}
	assert cleaned["ref"] == {"profile_id": "h1", "role": "HR"}


def test_cycles_are_replaced():
	payload = {"name": "loop"}
	payload["self"] = payload
	cleaned = safe_payload(payload)
	assert cleaned == {"name": "loop", "self": CIRCULAR}
	json.dumps(cleaned)


def test_shared_references_are_not_cycles():
	shared = {"v": 1}
	cleaned = safe_payload({"a": shared, "b": [shared, shared]})
	assert cleaned == {"a": {"v": 1}, "b": [{"v": 1}, {"v": 1}]}


def test_unserializable_values_are_dropped_or_stringified():
	cleaned = safe_payload(
		{
			"blob": b"\x00\x01",
			"nan": math.nan,
			"inf": [math.inf, 1.0],
			"opaque": _Opaque(),
			"broken": _Broken(),
			"keep": "yes",
		}
	)
	assert cleaned == {"nan": None, "inf": [None, 1.0], "opaque": "opaque", "keep": "yes"}


def test_top_level_bytes_become_none():
	assert safe_payload(b"raw") is None
