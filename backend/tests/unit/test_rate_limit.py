import pytest

from app.infra.rate_limit import allow


@pytest.mark.asyncio
async def test_rate_limit_allows_within_budget():
	assert await allow("messaging_socket", "sid-1", limit=2, window_seconds=60, now=120.0)
	assert await allow("messaging_socket", "sid-1", limit=2, window_seconds=60, now=130.0)
	assert not await allow("messaging_socket", "sid-1", limit=2, window_seconds=60, now=140.0)


@pytest.mark.asyncio
async def test_rate_limit_resets_with_next_window():
	assert await allow("messaging_socket", "sid-2", limit=1, window_seconds=60, now=60.0)
	assert not await allow("messaging_socket", "sid-2", limit=1, window_seconds=60, now=119.0)
	assert await allow("messaging_socket", "sid-2", limit=1, window_seconds=60, now=120.0)


@pytest.mark.asyncio
async def test_rate_limit_budgets_are_per_actor():
	assert await allow("messaging_socket", "sid-a", limit=1, window_seconds=60, now=0.0)
	assert await allow("messaging_socket", "sid-b", limit=1, window_seconds=60, now=0.0)


@pytest.mark.asyncio
async def test_non_positive_limit_blocks():
	assert not await allow("messaging_socket", "sid-3", limit=0)
