import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.messaging.notifications import NotificationDispatcher, get_dispatcher, set_dispatcher
from app.domain.messaging.repo import reset_memory_store
from app.domain.presence import PresenceEngine, get_engine, set_engine
from app.domain.profiles.directory import reset_memory_directory, seed_profiles
from app.domain.profiles.models import ProfileRecord, ResolvedProfile, Role
from app.infra import postgres
from app.main import app
from app.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


PROFILE_RECORDS = [
	ProfileRecord("a1", Role.ADMIN, "auth-a1", "Ada Admin", "ada@corp.example"),
	ProfileRecord("h1", Role.HR, "auth-h1", "Hana People", "hana@corp.example"),
	ProfileRecord("e1", Role.EMPLOYEE, "auth-e1", "Eli Engineer", "eli@corp.example", department="engineering"),
	ProfileRecord("e2", Role.EMPLOYEE, "auth-e2", "Emma Sales", "emma@corp.example", department="sales"),
]


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await get_dispatcher().drain()
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id/X-User-Role headers, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest_asyncio.fixture(autouse=True)
async def reset_state():
	await reset_memory_store()
	await reset_memory_directory()
	get_engine().reset()
	yield
	await reset_memory_store()
	await reset_memory_directory()
	get_engine().reset()


@pytest_asyncio.fixture
async def profiles():
	"""Seed the directory and return resolved profiles keyed by profile id."""
	await seed_profiles(PROFILE_RECORDS)
	return {record.profile_id: ResolvedProfile.from_record(record) for record in PROFILE_RECORDS}


@pytest.fixture
def transport():
	mock = AsyncMock()
	mock.emit = AsyncMock()
	mock.enter_room = AsyncMock()
	mock.leave_room = AsyncMock()
	return mock


@pytest.fixture
def presence_engine(transport):
	"""Swap in an engine whose transport records every emit."""
	original = get_engine()
	engine = PresenceEngine(transport=transport)
	set_engine(engine)
	try:
		yield engine
	finally:
		set_engine(original)


@pytest_asyncio.fixture
async def dispatcher():
	original = get_dispatcher()
	replacement = NotificationDispatcher(enabled=True)
	set_dispatcher(replacement)
	try:
		yield replacement
	finally:
		await replacement.drain()
		set_dispatcher(original)


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
