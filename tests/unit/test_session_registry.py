from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from lessonflow.api.deps_concurrency import SessionRegistry


def _factory():
  created: list[MagicMock] = []

  def _make(user_id: str):
    machine = MagicMock(name=f"machine-{user_id}")
    machine.load = AsyncMock()
    machine.check_day_rollover = AsyncMock(return_value=False)
    machine.pending_writes = {}
    created.append(machine)
    return machine

  return _make, created


@pytest.mark.anyio
async def test_machine_is_created_once_and_loaded() -> None:
  registry = SessionRegistry()
  factory, created = _factory()

  async with registry.acquire("u1", factory) as first:
    pass
  async with registry.acquire("u1", factory) as second:
    pass

  assert first is second
  assert len(created) == 1
  first.load.assert_awaited_once()
  first.check_day_rollover.assert_awaited_once()
  assert len(registry) == 1


@pytest.mark.anyio
async def test_actions_for_one_user_are_serialized() -> None:
  registry = SessionRegistry()
  factory, _created = _factory()
  active = 0
  peak = 0

  async def _action() -> None:
    nonlocal active, peak
    async with registry.acquire("u1", factory):
      active += 1
      peak = max(peak, active)
      await asyncio.sleep(0)
      active -= 1

  await asyncio.gather(*(_action() for _ in range(5)))

  assert peak == 1


@pytest.mark.anyio
async def test_discard_forces_a_fresh_machine() -> None:
  registry = SessionRegistry()
  factory, created = _factory()

  async with registry.acquire("u1", factory):
    pass
  registry.discard("u1")
  async with registry.acquire("u1", factory):
    pass

  assert len(created) == 2


@pytest.mark.anyio
async def test_discard_drops_the_idle_lock() -> None:
  registry = SessionRegistry()
  factory, _created = _factory()

  async with registry.acquire("u1", factory):
    registry.discard("u1")
    assert registry.lock_count == 1

  assert len(registry) == 0
  assert registry.lock_count == 0


@pytest.mark.anyio
async def test_least_recently_used_idle_machines_are_evicted() -> None:
  registry = SessionRegistry(max_machines=2)
  factory, created = _factory()

  for user_id in ("u1", "u2", "u1", "u3"):
    async with registry.acquire(user_id, factory):
      pass

  assert len(registry) == 2
  assert registry.lock_count == 2
  assert len(created) == 3

  async with registry.acquire("u2", factory) as reloaded:
    pass

  assert reloaded is created[-1]
  assert len(created) == 4
  reloaded.load.assert_awaited_once()


@pytest.mark.anyio
async def test_busy_machines_are_not_evicted() -> None:
  registry = SessionRegistry(max_machines=1)
  factory, created = _factory()

  async with registry.acquire("u1", factory) as busy:
    async with registry.acquire("u2", factory):
      pass
    assert len(registry) == 1

  async with registry.acquire("u1", factory) as again:
    pass

  assert again is busy
  assert len(created) == 2


def test_registry_requires_a_positive_cap() -> None:
  with pytest.raises(ValueError):
    SessionRegistry(max_machines=0)
