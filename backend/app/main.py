"""ASGI entrypoint: FastAPI routes plus the Socket.IO messaging namespace.

Serve ``app.main:socket_app``; it answers Socket.IO traffic and hands every
other request to the FastAPI app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import conversations, messages, ops, presence
from app.api.errors import install_error_handlers
from app.api.request_id import RequestIdMiddleware
from app.domain.messaging.notifications import get_dispatcher
from app.domain.presence import get_engine
from app.domain.presence.sockets import MessagingNamespace
from app.infra import postgres
from app.obs import init as obs_init
from app.settings import settings

_DEV_ORIGINS = [
	"http://localhost:3000",
	"http://127.0.0.1:3000",
	"http://localhost:5173",
	"http://127.0.0.1:5173",
]


def _allowed_origins() -> List[str]:
	configured = [origin for origin in settings.cors_allow_origins or () if origin]
	if not configured:
		return list(_DEV_ORIGINS) if settings.is_dev() else []
	# Credentialed CORS cannot use "*"; expand it in dev, drop it elsewhere.
	if "*" in configured:
		return list(_DEV_ORIGINS) if settings.is_dev() else [o for o in configured if o != "*"]
	return configured


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	try:
		yield
	finally:
		await get_dispatcher().drain()
		await postgres.close_pool()


allow_origins = _allowed_origins()

app = FastAPI(title="HR Messaging Core", lifespan=lifespan)
install_error_handlers(app)
app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs_init(app)
# Added last so it wraps everything, including the observability middleware.
app.add_middleware(RequestIdMiddleware)

for router in (conversations.router, messages.router, presence.router, ops.router):
	app.include_router(router)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
sio.register_namespace(MessagingNamespace(get_engine()))
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
