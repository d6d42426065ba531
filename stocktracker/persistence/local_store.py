from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from stocktracker.common.errors import PersistenceError
from stocktracker.common.logging import log_event

from .interfaces import BatchOperation, Document, DocumentStore, SnapshotCallback, Unsubscribe

logger = logging.getLogger(__name__)


class LocalDocumentStore(DocumentStore):
    """
    In-process document store, optionally persisted to a single JSON file.

    Layout of the JSON file:
      {"<collection path>": {"<doc id>": {...document...}, ...}, ...}

    Snapshot deliveries are scheduled with `loop.call_soon`, so subscribers
    observe them only after the mutating coroutine yields.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._collections: dict[str, dict[str, Document]] = {}
        self._subscribers: dict[str, list[SnapshotCallback]] = {}
        self._fail_next: list[tuple[Optional[str], BaseException]] = []
        if self.path is not None and self.path.exists():
            self._load()

    # --- test hooks -------------------------------------------------------

    def fail_next(self, operation: Optional[str] = None, error: BaseException | None = None) -> None:
        """
        Make the next matching operation ("write", "delete", "commit_batch", or any
        when None) raise `PersistenceError`.
        """
        self._fail_next.append((operation, error or RuntimeError("injected store failure")))

    def documents(self, collection_path: str) -> list[Document]:
        return [copy.deepcopy(d) for d in self._collections.get(collection_path, {}).values()]

    # --- DocumentStore ----------------------------------------------------

    async def write(self, collection_path: str, doc_id: str, document: Mapping[str, Any]) -> None:
        self._maybe_fail("write", collection_path)
        self._collections.setdefault(collection_path, {})[str(doc_id)] = _with_id(document, doc_id)
        self._persist()
        self._schedule_delivery({collection_path})

    async def delete(self, collection_path: str, doc_id: str) -> None:
        self._maybe_fail("delete", collection_path)
        self._collections.get(collection_path, {}).pop(str(doc_id), None)
        self._persist()
        self._schedule_delivery({collection_path})

    async def commit_batch(self, operations: Sequence[BatchOperation]) -> None:
        paths = {op.path for op in operations}
        self._maybe_fail("commit_batch", ",".join(sorted(paths)) or "<empty batch>")
        if not operations:
            return

        # Apply to a copy first so a bad operation leaves nothing half-written.
        staged = {p: dict(self._collections.get(p, {})) for p in paths}
        for op in operations:
            coll = staged[op.path]
            if op.kind == "set":
                if op.document is None:
                    raise PersistenceError("commit_batch", op.path, ValueError("set operation without document"))
                coll[str(op.id)] = _with_id(op.document, op.id)
            elif op.kind == "delete":
                coll.pop(str(op.id), None)
            else:
                raise PersistenceError("commit_batch", op.path, ValueError(f"unknown operation {op.kind!r}"))

        self._collections.update(staged)
        self._persist()
        self._schedule_delivery(paths)

    async def subscribe(self, collection_path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        subs = self._subscribers.setdefault(collection_path, [])
        subs.append(on_snapshot)
        self._schedule_delivery({collection_path}, only=on_snapshot)

        def _unsubscribe() -> None:
            try:
                subs.remove(on_snapshot)
            except ValueError:
                pass

        return _unsubscribe

    # --- internals --------------------------------------------------------

    def _maybe_fail(self, operation: str, path: str) -> None:
        for i, (op, err) in enumerate(self._fail_next):
            if op is None or op == operation:
                del self._fail_next[i]
                log_event(logger, "store.injected_failure", severity="WARNING", operation=operation, path=path)
                raise PersistenceError(operation, path, err)

    def _schedule_delivery(self, paths: set[str], *, only: SnapshotCallback | None = None) -> None:
        loop = asyncio.get_running_loop()
        for p in paths:
            callbacks = [only] if only is not None else list(self._subscribers.get(p, []))
            for cb in callbacks:
                loop.call_soon(self._deliver, p, cb)

    def _deliver(self, path: str, callback: SnapshotCallback) -> None:
        # The subscriber may have unsubscribed between scheduling and delivery.
        if callback not in self._subscribers.get(path, []):
            return
        callback(self.documents(path))

    def _persist(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._collections, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def _load(self) -> None:
        assert self.path is not None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError("load", str(self.path), e) from e
        if not isinstance(raw, dict):
            raise PersistenceError("load", str(self.path), ValueError("expected a JSON object"))
        self._collections = {str(p): {str(k): dict(v) for k, v in docs.items()} for p, docs in raw.items()}


def _with_id(document: Mapping[str, Any], doc_id: str) -> Document:
    doc = copy.deepcopy(dict(document))
    doc["id"] = str(doc_id)
    return doc
