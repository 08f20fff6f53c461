"""In-memory document store with optimistic transactions for tests and local runs."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from lessonflow.storage.document_store import TransactionConflictError, deep_merge

T = TypeVar("T")
logger = logging.getLogger(__name__)

_DELETE = object()


def _add_counts(target: dict[str, Any], counts: Mapping[str, Any]) -> None:
  for key, value in counts.items():
    if isinstance(value, Mapping):
      child = target.get(key)
      if not isinstance(child, dict):
        child = {}
        target[key] = child
      _add_counts(child, value)
    else:
      current = target.get(key)
      target[key] = (current if isinstance(current, int | float) and not isinstance(current, bool) else 0) + value


class _MemoryTransaction:
  """Snapshot reads plus buffered writes, validated against document versions at commit."""

  def __init__(self, store: MemoryDocumentStore) -> None:
    self._store = store
    self.read_versions: dict[str, int] = {}
    self.writes: list[tuple[str, Any, bool]] = []

  def get(self, path: str) -> dict[str, Any] | None:
    if self.writes:
      raise RuntimeError("Transaction reads must happen before writes.")
    self.read_versions[path] = self._store._versions.get(path, 0)
    data = self._store._documents.get(path)
    return copy.deepcopy(data) if data is not None else None

  def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
    self.writes.append((path, copy.deepcopy(dict(data)), merge))

  def delete(self, path: str) -> None:
    self.writes.append((path, _DELETE, False))


class MemoryDocumentStore:
  """Document store backed by a dict of slash-delimited paths.

  How/Why:
    - Transactions record the version of every document they read, yield to the loop, then commit under
      a lock only if none of those versions moved; otherwise the callback is re-run.
    - This mirrors Firestore's optimistic transaction retries closely enough to test quota races.
  """

  def __init__(self, *, max_transaction_attempts: int = 5) -> None:
    self._documents: dict[str, dict[str, Any]] = {}
    self._versions: dict[str, int] = {}
    self._lock = asyncio.Lock()
    self._max_transaction_attempts = max_transaction_attempts

  def _bump(self, path: str) -> None:
    self._versions[path] = self._versions.get(path, 0) + 1

  def _write(self, path: str, data: Any, merge: bool) -> None:
    if data is _DELETE:
      self._documents.pop(path, None)
    elif merge and path in self._documents:
      deep_merge(self._documents[path], data)
    else:
      self._documents[path] = deep_merge({}, data)
    self._bump(path)

  async def get(self, path: str) -> dict[str, Any] | None:
    data = self._documents.get(path)
    return copy.deepcopy(data) if data is not None else None

  async def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
    async with self._lock:
      self._write(path, copy.deepcopy(dict(data)), merge)

  async def delete(self, path: str) -> None:
    async with self._lock:
      self._write(path, _DELETE, False)

  async def increment(self, path: str, counts: Mapping[str, Any], *, fields: Mapping[str, Any] | None = None) -> None:
    async with self._lock:
      document = self._documents.setdefault(path, {})
      _add_counts(document, counts)
      if fields:
        deep_merge(document, copy.deepcopy(dict(fields)))
      self._bump(path)

  async def list_documents(self, collection: str, *, order_by: str | None = None, descending: bool = False, limit: int | None = None) -> list[dict[str, Any]]:
    prefix = collection.rstrip("/") + "/"
    documents = [copy.deepcopy(data) for path, data in self._documents.items() if path.startswith(prefix) and "/" not in path[len(prefix) :]]
    if order_by is not None:
      # Documents without the ordering field are excluded, as Firestore does.
      documents = [document for document in documents if document.get(order_by) is not None]
      documents.sort(key=lambda document: document[order_by], reverse=descending)
    if limit is not None:
      documents = documents[:limit]
    return documents

  async def run_transaction(self, fn: Callable[[_MemoryTransaction], T]) -> T:
    for attempt in range(1, self._max_transaction_attempts + 1):
      transaction = _MemoryTransaction(self)
      result = fn(transaction)
      # Yield so concurrent transactions interleave between read and commit.
      await asyncio.sleep(0)
      async with self._lock:
        stale = [path for path, version in transaction.read_versions.items() if self._versions.get(path, 0) != version]
        if not stale:
          for path, data, merge in transaction.writes:
            self._write(path, data, merge)
          return result
      logger.debug("Transaction conflict on %s (attempt %d/%d); retrying.", stale, attempt, self._max_transaction_attempts)
    raise TransactionConflictError(f"Transaction aborted after {self._max_transaction_attempts} conflicting attempts.")

  def snapshot(self) -> dict[str, dict[str, Any]]:
    """Return a deep copy of every stored document keyed by path."""
    return copy.deepcopy(self._documents)
