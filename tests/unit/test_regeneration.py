from __future__ import annotations

import asyncio

import pytest

from lessonflow.services.regeneration import LIMIT_MESSAGE, RegenAllowed, RegenerationGuard, RegenLimitExceeded

DATE = "2024-05-01"


@pytest.mark.anyio
async def test_concurrent_regenerations_allow_exactly_one(store, paths) -> None:
  """Two near-simultaneous requests: one success, one limit result, counter ends at 1."""
  await store.set(paths.progress(DATE, 1), {"content": {"theme": "Old"}})
  guard = RegenerationGuard(store, paths, daily_limit=1)

  results = await asyncio.gather(guard.try_regenerate(DATE, 1), guard.try_regenerate(DATE, 1))

  assert sum(isinstance(result, RegenAllowed) for result in results) == 1
  assert sum(isinstance(result, RegenLimitExceeded) for result in results) == 1
  assert await store.get(paths.daily_stats(DATE)) == {"regenCount": 1}
  assert await store.get(paths.progress(DATE, 1)) is None


@pytest.mark.anyio
async def test_limit_result_leaves_content_untouched(store, paths) -> None:
  guard = RegenerationGuard(store, paths)
  assert await guard.try_regenerate(DATE, 1) == RegenAllowed(regen_count=1)

  await store.set(paths.progress(DATE, 1), {"content": {"theme": "New"}})
  result = await guard.try_regenerate(DATE, 1)

  assert result == RegenLimitExceeded(date_key=DATE, regen_count=1)
  assert result.message == LIMIT_MESSAGE
  assert await store.get(paths.progress(DATE, 1)) == {"content": {"theme": "New"}}


@pytest.mark.anyio
async def test_quota_is_per_day(store, paths) -> None:
  guard = RegenerationGuard(store, paths)

  assert isinstance(await guard.try_regenerate(DATE, 1), RegenAllowed)
  assert isinstance(await guard.try_regenerate(DATE, 2), RegenLimitExceeded)
  assert isinstance(await guard.try_regenerate("2024-05-02", 1), RegenAllowed)


@pytest.mark.anyio
async def test_configurable_daily_limit(store, paths) -> None:
  guard = RegenerationGuard(store, paths, daily_limit=2)

  first = await guard.try_regenerate(DATE, 1)
  second = await guard.try_regenerate(DATE, 1)
  third = await guard.try_regenerate(DATE, 1)

  assert (first, second) == (RegenAllowed(regen_count=1), RegenAllowed(regen_count=2))
  assert isinstance(third, RegenLimitExceeded)
