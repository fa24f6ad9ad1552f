"""Request id propagation.

``RequestIdMiddleware`` sits outermost so the id it binds is visible to the
observability middleware, to the error handlers and to endpoint code through
``request.state``. Clients may supply their own id via ``X-Request-Id``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Request
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.obs import logging as obs_logging

REQUEST_ID_ATTR = "request_id"
REQUEST_ID_HEADER = "X-Request-Id"
_MAX_CLIENT_ID_LENGTH = 128


def _client_request_id(scope: Scope) -> Optional[str]:
    for name, value in scope.get("headers") or []:
        if name.lower() == REQUEST_ID_HEADER.lower().encode():
            candidate = value.decode("latin-1").strip()
            if candidate and len(candidate) <= _MAX_CLIENT_ID_LENGTH:
                return candidate
    return None


class RequestIdMiddleware:
    """Pure ASGI middleware; leaves the request body untouched."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rid = _client_request_id(scope) or uuid.uuid4().hex
        scope.setdefault("state", {})[REQUEST_ID_ATTR] = rid

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                if REQUEST_ID_HEADER not in headers:
                    headers.append(REQUEST_ID_HEADER, rid)
            await send(message)

        await self.app(scope, receive, send_with_request_id)


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    """Return the id bound by the middleware, else the logging context."""
    if request is not None:
        rid = getattr(request.state, REQUEST_ID_ATTR, None)
        if rid:
            return str(rid)
    return obs_logging.current_request_id() or default
