from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar

from google.api_core import exceptions as gexc
from google.auth import exceptions as google_auth_exceptions

from stocktracker.common.errors import PersistenceError
from stocktracker.common.logging import log_event

from .firebase_client import get_firestore_client
from .interfaces import BatchOperation, Document, DocumentStore, SnapshotCallback, Unsubscribe

T = TypeVar("T")
logger = logging.getLogger(__name__)

# API, retry and transport failures, plus credential and client bootstrap errors.
_STORE_ERRORS = (gexc.GoogleAPIError, google_auth_exceptions.GoogleAuthError, RuntimeError)


class FirestoreDocumentStore(DocumentStore):
    """
    Cloud Firestore backend.

    - Blocking SDK calls run in a worker thread (`asyncio.to_thread`) so the event
      loop is never blocked.
    - Listener callbacks arrive on the SDK's watch thread and are marshalled onto
      the owning loop with `call_soon_threadsafe`.
    - Errors are never retried here; they surface as `PersistenceError`.
    """

    def __init__(self, client: Any | None = None, *, project_id: Optional[str] = None) -> None:
        self._client = client
        self._project_id = project_id

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_firestore_client(project_id=self._project_id)
        return self._client

    def _doc_ref(self, collection_path: str, doc_id: str):
        return self.client.collection(collection_path).document(str(doc_id))

    async def _run(self, operation: str, path: str, fn: Callable[[], T]) -> T:
        # fn also resolves the client, so bootstrap failures surface here too.
        try:
            return await asyncio.to_thread(fn)
        except _STORE_ERRORS as e:
            log_event(
                logger,
                "store.operation_failed",
                severity="ERROR",
                backend="firestore",
                operation=operation,
                path=path,
                error=f"{type(e).__name__}: {e}",
            )
            raise PersistenceError(operation, path, e) from e

    async def write(self, collection_path: str, doc_id: str, document: Mapping[str, Any]) -> None:
        doc = dict(document)
        doc["id"] = str(doc_id)
        await self._run("write", collection_path, lambda: self._doc_ref(collection_path, doc_id).set(doc))

    async def delete(self, collection_path: str, doc_id: str) -> None:
        await self._run("delete", collection_path, lambda: self._doc_ref(collection_path, doc_id).delete())

    async def commit_batch(self, operations: Sequence[BatchOperation]) -> None:
        if not operations:
            return

        def _commit() -> None:
            batch = self.client.batch()
            for op in operations:
                ref = self._doc_ref(op.path, op.id)
                if op.kind == "set":
                    doc = dict(op.document or {})
                    doc["id"] = str(op.id)
                    batch.set(ref, doc)
                else:
                    batch.delete(ref)
            batch.commit()

        paths = ",".join(sorted({op.path for op in operations}))
        await self._run("commit_batch", paths, _commit)

    async def subscribe(self, collection_path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def _deliver(docs: list[Document]) -> None:
            on_snapshot(docs)

        def _listener(col_snapshot, _changes, _read_time) -> None:
            docs: list[Document] = []
            for snap in col_snapshot:
                data = snap.to_dict() or {}
                data.setdefault("id", snap.id)
                docs.append(data)
            loop.call_soon_threadsafe(_deliver, docs)

        watch = await self._run(
            "subscribe", collection_path, lambda: self.client.collection(collection_path).on_snapshot(_listener)
        )
        log_event(logger, "store.subscribed", severity="DEBUG", backend="firestore", path=collection_path)
        return watch.unsubscribe
