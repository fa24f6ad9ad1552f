"""Structured JSON logging with request and socket context.

Context fields (request id, route, profile id, socket sid) live in context
variables so that every record emitted while handling an HTTP request or a
socket event carries them without threading them through call sites.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.settings import settings

_LOGGER_NAME = "hrm"

_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	"request_id": ContextVar("obs_request_id", default=None),
	"route": ContextVar("obs_route", default=None),
	"profile_id": ContextVar("obs_profile_id", default=None),
	"sid": ContextVar("obs_socket_sid", default=None),
}

# Message bodies and contact data never reach the log stream.
_SENSITIVE_KEYWORDS = ("token", "secret", "authorization", "password", "email", "content", "body")

_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 10
_MAX_DEPTH = 4

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind request_id / route / profile_id / sid and return reset tokens."""
	tokens: Dict[str, Token] = {}
	for key, value in fields.items():
		if value is not None:
			tokens[key] = _CONTEXT[key].set(value)
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for key, token in tokens.items():
		_CONTEXT[key].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _is_sensitive(key: str) -> bool:
	lowered = key.lower()
	return any(marker in lowered for marker in _SENSITIVE_KEYWORDS)


def _scrub(value: Any, depth: int = 0) -> Any:
	"""Truncate long strings and collections; redact sensitive mapping keys."""
	if value is None or isinstance(value, (bool, int, float)):
		return value
	if isinstance(value, str):
		return value[:_MAX_STRING_LENGTH] + "…" if len(value) > _MAX_STRING_LENGTH else value
	if depth >= _MAX_DEPTH:
		return "…"
	if isinstance(value, dict):
		items = list(value.items())
		scrubbed = {
			str(key): "[redacted]" if _is_sensitive(str(key)) else _scrub(nested, depth + 1)
			for key, nested in items[:_MAX_COLLECTION_ITEMS]
		}
		if len(items) > _MAX_COLLECTION_ITEMS:
			scrubbed["…"] = f"+{len(items) - _MAX_COLLECTION_ITEMS} keys"
		return scrubbed
	if isinstance(value, (list, tuple, set, frozenset)):
		seq = list(value)
		trimmed = [_scrub(item, depth + 1) for item in seq[:_MAX_COLLECTION_ITEMS]]
		return trimmed + ["…"] if len(seq) > _MAX_COLLECTION_ITEMS else trimmed
	return str(value)


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record; ``extra=`` fields are sanitized and inlined."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, object] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for key, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[key] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RESERVED_ATTRS or key in payload:
				continue
			payload[key] = "[redacted]" if _is_sensitive(key) else _scrub(value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a ``obs_log_sampling_rate_info`` share of INFO records; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	"""Route the root logger through the JSON formatter and the info sampler."""
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
