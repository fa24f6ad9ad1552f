"""JSON error envelopes.

Every error response carries ``detail`` and the ``request_id`` bound by
``RequestIdMiddleware``. Messaging errors expose their machine-readable
reason inside ``detail``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.request_id import get_request_id
from app.domain.messaging.exceptions import MessagingError

log = logging.getLogger(__name__)


def _envelope(request: Request, status_code: int, body: Dict[str, Any], headers=None) -> JSONResponse:
    body["request_id"] = get_request_id(request)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(request, exc.status_code, {"detail": exc.detail}, getattr(exc, "headers", None))


async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    return _envelope(request, 422, {"detail": "validation_error", "errors": errors})


async def messaging_error(request: Request, exc: MessagingError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("messaging_error", extra={"reason": exc.reason, "path": request.url.path}, exc_info=exc)
    else:
        log.info("messaging_rejected", extra={"reason": exc.reason, "path": request.url.path})
    return _envelope(request, exc.status_code, {"detail": exc.to_detail()})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error)
    app.add_exception_handler(RequestValidationError, validation_error)
    app.add_exception_handler(MessagingError, messaging_error)
