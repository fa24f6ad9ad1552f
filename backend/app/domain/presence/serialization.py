"""Make arbitrary payloads safe for the Socket.IO transport.

Payloads usually come straight from domain objects: datetimes, enums, ULIDs,
dataclasses. The fast path round-trips through JSON with a permissive encoder;
anything that still fails is walked and cleaned value by value.
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Set

import ulid

from app.obs import metrics as obs_metrics

log = logging.getLogger(__name__)

CIRCULAR = "[Circular]"
_DROP = object()


def _encode_default(value: Any) -> Any:
	if isinstance(value, (datetime, date, time)):
		return value.isoformat()
	if isinstance(value, (uuid.UUID, ulid.ULID)):
		return str(value)
	if isinstance(value, Enum):
		return value.value
	if isinstance(value, Decimal):
		return float(value)
	if isinstance(value, (set, frozenset, tuple)):
		return list(value)
	if hasattr(value, "to_dict") and callable(value.to_dict):
		return value.to_dict()
	if is_dataclass(value) and not isinstance(value, type):
		return asdict(value)
	raise TypeError(f"{type(value).__name__} is not serializable")


def safe_payload(payload: Any) -> Any:
	"""Return a JSON-compatible copy of ``payload``; never raises."""
	try:
		return json.loads(json.dumps(payload, default=_encode_default, allow_nan=False))
	except (TypeError, ValueError, RecursionError) as exc:
		log.debug("payload_deep_clean", extra={"error": str(exc)})
		obs_metrics.payload_deep_clean()
	cleaned = deep_clean(payload)
	return None if cleaned is _DROP else cleaned


def deep_clean(value: Any, _path: Optional[Set[int]] = None) -> Any:
	path = _path if _path is not None else set()
	if value is None or isinstance(value, (str, bool, int)):
		return value
	if isinstance(value, float):
		return value if math.isfinite(value) else None
	if isinstance(value, dict):
		if id(value) in path:
			return CIRCULAR
		path.add(id(value))
		result = {}
		for key, item in value.items():
			cleaned = deep_clean(item, path)
			if cleaned is not _DROP:
				result[str(key)] = cleaned
		path.discard(id(value))
		return result
	if isinstance(value, (list, tuple, set, frozenset)):
		if id(value) in path:
			return CIRCULAR
		path.add(id(value))
		items = [deep_clean(item, path) for item in value]
		path.discard(id(value))
		return [item for item in items if item is not _DROP]
	if isinstance(value, (bytes, bytearray, memoryview)):
		return _DROP
	if id(value) in path:
		return CIRCULAR
	path.add(id(value))
	try:
		converted = _encode_default(value)
	except (TypeError, ValueError, RecursionError):
		converted = _DROP
	try:
		if converted is _DROP:
			return _stringify(value)
		return deep_clean(converted, path)
	finally:
		path.discard(id(value))


def _stringify(value: Any) -> Any:
	try:
		return str(value)
	except Exception:  # arbitrary __str__ implementations
		return _DROP
