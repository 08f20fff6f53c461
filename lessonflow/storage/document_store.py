"""Storage interfaces for keyed documents."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class StoreError(RuntimeError):
  """A document store operation failed."""


class TransactionConflictError(StoreError):
  """A transaction kept conflicting with concurrent writers and gave up."""


class TransactionView(Protocol):
  """Reads and buffered writes available inside a store transaction.

  Reads must happen before writes; raising from the callback aborts without writing.
  """

  def get(self, path: str) -> dict[str, Any] | None:
    """Read a document as of the transaction snapshot."""

  def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
    """Buffer a full or merged write."""

  def delete(self, path: str) -> None:
    """Buffer a delete."""


class DocumentStore(Protocol):
  """Repository contract for document persistence."""

  async def get(self, path: str) -> dict[str, Any] | None:
    """Fetch a document, or None when missing."""

  async def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
    """Write a document; with `merge`, nested maps are merged into the existing document."""

  async def delete(self, path: str) -> None:
    """Delete a document if present."""

  async def increment(self, path: str, counts: Mapping[str, Any], *, fields: Mapping[str, Any] | None = None) -> None:
    """Atomically add nested numeric `counts` (creating missing fields) and merge plain `fields`."""

  async def list_documents(self, collection: str, *, order_by: str | None = None, descending: bool = False, limit: int | None = None) -> list[dict[str, Any]]:
    """List the direct documents of a collection, ordered and limited."""

  async def run_transaction(self, fn: Callable[[TransactionView], T]) -> T:
    """Run `fn` atomically, retrying it on conflict with concurrent transactions."""


def deep_merge(base: dict[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
  """Merge `update` into `base` in place, recursing into nested maps."""
  for key, value in update.items():
    current = base.get(key)
    if isinstance(value, Mapping) and isinstance(current, dict):
      deep_merge(current, value)
    elif isinstance(value, Mapping):
      base[key] = deep_merge({}, value)
    else:
      base[key] = value
  return base
