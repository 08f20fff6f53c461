"""Firestore-backed document store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from firebase_admin import firestore
from google.api_core.exceptions import GoogleAPICallError
from google.cloud.firestore import Client as FirestoreClient
from starlette.concurrency import run_in_threadpool

from lessonflow.storage.document_store import StoreError

T = TypeVar("T")
logger = logging.getLogger(__name__)


def _increments(counts: Mapping[str, Any]) -> dict[str, Any]:
  """Convert nested numeric counts into nested `firestore.Increment` sentinels."""
  converted: dict[str, Any] = {}
  for key, value in counts.items():
    if isinstance(value, Mapping):
      converted[key] = _increments(value)
    else:
      converted[key] = firestore.Increment(value)
  return converted


class _FirestoreTransactionView:
  def __init__(self, client: FirestoreClient, transaction: Any) -> None:
    self._client = client
    self._transaction = transaction

  def get(self, path: str) -> dict[str, Any] | None:
    snapshot = self._client.document(path).get(transaction=self._transaction)
    return snapshot.to_dict() if snapshot.exists else None

  def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
    self._transaction.set(self._client.document(path), dict(data), merge=merge)

  def delete(self, path: str) -> None:
    self._transaction.delete(self._client.document(path))


class FirestoreDocumentStore:
  """Document store over the Firebase Admin Firestore client.

  How/Why:
    - The SDK is synchronous, so every call runs through `run_in_threadpool` to keep the loop free.
    - Nested merges with `firestore.Increment` give atomic counters without a transaction.
  """

  def __init__(self, client: FirestoreClient) -> None:
    self._client = client

  async def _call(self, label: str, func: Callable[[], T]) -> T:
    try:
      return await run_in_threadpool(func)
    except GoogleAPICallError as exc:
      logger.error("Firestore %s failed: %s", label, exc)
      raise StoreError(f"Firestore {label} failed: {exc}") from exc

  async def get(self, path: str) -> dict[str, Any] | None:
    def _get() -> dict[str, Any] | None:
      snapshot = self._client.document(path).get()
      return snapshot.to_dict() if snapshot.exists else None

    return await self._call("get", _get)

  async def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
    await self._call("set", lambda: self._client.document(path).set(dict(data), merge=merge))

  async def delete(self, path: str) -> None:
    await self._call("delete", lambda: self._client.document(path).delete())

  async def increment(self, path: str, counts: Mapping[str, Any], *, fields: Mapping[str, Any] | None = None) -> None:
    payload = _increments(counts)
    if fields:
      payload.update(fields)
    await self._call("increment", lambda: self._client.document(path).set(payload, merge=True))

  async def list_documents(self, collection: str, *, order_by: str | None = None, descending: bool = False, limit: int | None = None) -> list[dict[str, Any]]:
    def _list() -> list[dict[str, Any]]:
      query: Any = self._client.collection(collection)
      if order_by is not None:
        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        query = query.order_by(order_by, direction=direction)
      if limit is not None:
        query = query.limit(limit)
      return [snapshot.to_dict() or {} for snapshot in query.stream()]

    return await self._call("list", _list)

  async def run_transaction(self, fn: Callable[[_FirestoreTransactionView], T]) -> T:
    def _run() -> T:
      @firestore.transactional
      def _body(transaction: Any) -> T:
        return fn(_FirestoreTransactionView(self._client, transaction))

      return _body(self._client.transaction())

    return await self._call("transaction", _run)
