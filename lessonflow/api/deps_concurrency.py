"""Per-user serialization of session actions."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, OrderedDict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from lessonflow.services.session import SessionStateMachine

logger = logging.getLogger(__name__)

MachineFactory = Callable[[str], SessionStateMachine]

DEFAULT_MAX_MACHINES = 1024


class SessionRegistry:
  """Hold one state machine and one lock per learner.

  How/Why:
    - A machine's context must not be mutated by another request while one of its awaits is suspended,
      so every action for a user runs under that user's lock.
    - New machines load today's slots before their first action; later acquisitions reload on day change.
    - User ids come from a request header, so the registry keeps at most `max_machines` entries and
      evicts the least recently used idle ones. An evicted learner is reloaded from the store on return.
  """

  def __init__(self, *, max_machines: int = DEFAULT_MAX_MACHINES) -> None:
    if max_machines <= 0:
      raise ValueError("max_machines must be a positive integer.")
    self._max_machines = max_machines
    self._machines: OrderedDict[str, SessionStateMachine] = OrderedDict()
    self._locks: dict[str, asyncio.Lock] = {}
    # Holders plus waiters per user; a lock is only dropped when nobody references it.
    self._in_use: Counter[str] = Counter()

  def __len__(self) -> int:
    return len(self._machines)

  @property
  def lock_count(self) -> int:
    return len(self._locks)

  @asynccontextmanager
  async def acquire(self, user_id: str, factory: MachineFactory) -> AsyncIterator[SessionStateMachine]:
    lock = self._locks.setdefault(user_id, asyncio.Lock())
    self._in_use[user_id] += 1
    try:
      async with lock:
        machine = self._machines.get(user_id)
        if machine is None:
          machine = factory(user_id)
          self._machines[user_id] = machine
          logger.info("Created session machine for user %s.", user_id)
          await machine.load()
        else:
          self._machines.move_to_end(user_id)
          await machine.check_day_rollover()
        yield machine
    finally:
      self._release(user_id)

  def _release(self, user_id: str) -> None:
    self._in_use[user_id] -= 1
    if self._in_use[user_id] <= 0:
      del self._in_use[user_id]
      if user_id not in self._machines:
        self._locks.pop(user_id, None)
    self._evict_idle()

  def _evict_idle(self) -> None:
    overflow = len(self._machines) - self._max_machines
    for user_id in list(self._machines):
      if overflow <= 0:
        break
      if self._in_use.get(user_id):
        continue
      self._forget(user_id)
      overflow -= 1

  def _forget(self, user_id: str) -> None:
    machine = self._machines.pop(user_id)
    self._locks.pop(user_id, None)
    if machine.pending_writes:
      logger.warning("Evicting session machine for user %s with %d unsaved writes.", user_id, len(machine.pending_writes))
    else:
      logger.info("Evicted idle session machine for user %s.", user_id)

  def discard(self, user_id: str) -> None:
    """Drop the cached machine; the lock goes too unless a request still holds or awaits it."""
    self._machines.pop(user_id, None)
    if not self._in_use.get(user_id):
      self._locks.pop(user_id, None)
