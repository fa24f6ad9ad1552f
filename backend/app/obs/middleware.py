"""HTTP instrumentation: latency histogram, request log line, log context."""

from __future__ import annotations

import time
from typing import Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.obs import logging as obs_logging
from app.obs import metrics
from app.settings import settings

_logger = obs_logging.get_logger("hrm.http")


def _route_template(scope: Scope) -> str:
	# The router copies the matched route into the scope; unmatched paths fall back to the raw path.
	route = scope.get("route")
	path = getattr(route, "path", None)
	return path or scope.get("path", "")


def _header(scope: Scope, name: bytes) -> Optional[str]:
	for key, value in scope.get("headers") or []:
		if key.lower() == name:
			return value.decode("latin-1")
	return None


class ObservabilityMiddleware:
	def __init__(self, app: ASGIApp, *, enabled: bool = True) -> None:
		self.app = app
		self.enabled = enabled

	async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
		if scope["type"] != "http" or not (self.enabled and settings.obs_enabled):
			await self.app(scope, receive, send)
			return

		method = scope.get("method", "GET")
		state = scope.setdefault("state", {})
		tokens = obs_logging.bind_context(
			request_id=state.get("request_id"),
			route=scope.get("path"),
			profile_id=_header(scope, b"x-user-id"),
		)
		status_code = 500

		async def capture_status(message: Message) -> None:
			nonlocal status_code
			if message["type"] == "http.response.start":
				status_code = int(message["status"])
			await send(message)

		started = time.perf_counter()
		try:
			await self.app(scope, receive, capture_status)
		except Exception:
			_logger.exception("http_request_error", extra={"method": method, "path": scope.get("path")})
			raise
		finally:
			elapsed = time.perf_counter() - started
			route = _route_template(scope)
			metrics.observe_request(route, method, status_code, elapsed)
			_logger.info(
				"http_request",
				extra={"status": status_code, "method": method, "latency_ms": round(elapsed * 1000, 3)},
			)
			obs_logging.reset_context(tokens)


def install(app: ASGIApp, *, enabled: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, enabled=enabled)
