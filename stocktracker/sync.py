"""
Keeps the in-memory target/actual collections consistent with the live store.

State machine:
  UNINITIALIZED -> LOADING -> READY (with identity, synced)
  any           -> READY (no identity) when the identity is cleared

Every delivered snapshot replaces the whole in-memory collection ("most recent
snapshot wins"). Bulk replaces compute their delete set from the in-memory
collection and are not locked against concurrent snapshot deliveries.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Any, Callable, Optional, Sequence

from stocktracker.common.errors import AuthenticationRequired, PersistenceError
from stocktracker.common.ids import new_id
from stocktracker.common.logging import log_event
from stocktracker.common.observable import Observable
from stocktracker.identity import Identity, IdentityProvider
from stocktracker.models import Entry, EntryKind, sort_entries
from stocktracker.persistence.interfaces import BatchOperation, Document, DocumentStore, Unsubscribe
from stocktracker.persistence.paths import user_collection_path

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    LOADING = "LOADING"
    READY = "READY"


@dataclass(frozen=True)
class StateTransition:
    from_state: SyncState
    to_state: SyncState
    trigger: str
    at: datetime
    uid: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_log_event(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "trigger": self.trigger,
            "at": self.at.isoformat(),
            "uid": self.uid,
            "meta": self.meta,
        }


class SyncCoordinator:
    """
    Owns the authoritative in-memory target and actual collections.

    Single-record operations apply their change to the in-memory collection first
    and then await the store. A rejected store call raises `PersistenceError` and
    leaves that optimistic change in place until the next snapshot replaces it.
    Bulk replaces commit one atomic batch and only then update memory.
    """

    def __init__(
        self,
        store: DocumentStore,
        identity_provider: IdentityProvider,
        *,
        id_factory: Callable[[], str] = new_id,
        now_fn: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._identity_provider = identity_provider
        self._id_factory = id_factory
        self._now = now_fn

        self.targets: Observable[list[Entry]] = Observable([])
        self.actuals: Observable[list[Entry]] = Observable([])
        self.state: Observable[SyncState] = Observable(SyncState.UNINITIALIZED)

        self._identity: Optional[Identity] = None
        self._unsubscribes: list[Unsubscribe] = []
        # Bumped on every identity change; work tagged with an older generation is dropped.
        self._generation = 0
        self._remove_identity_listener: Callable[[], None] | None = None

    # --- lifecycle --------------------------------------------------------

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_ready(self) -> bool:
        return self.state.value == SyncState.READY

    async def wait_until_ready(self) -> None:
        """Suspend until the coordinator reaches READY (returns at once if it already has)."""
        if self.is_ready:
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _on_state(state: SyncState) -> None:
            if state == SyncState.READY and not fut.done():
                fut.set_result(None)

        unsubscribe = self.state.subscribe(_on_state)
        try:
            await fut
        finally:
            unsubscribe()

    async def start(self) -> None:
        if self._remove_identity_listener is None:
            self._remove_identity_listener = self._identity_provider.on_identity_change(self._handle_identity)
        if self.state.value == SyncState.UNINITIALIZED:
            self._transition(SyncState.LOADING, trigger="start")
        await self._handle_identity(self._identity_provider.current_identity())

    def close(self) -> None:
        self._generation += 1
        self._close_subscriptions()
        if self._remove_identity_listener is not None:
            self._remove_identity_listener()
            self._remove_identity_listener = None

    def _transition(self, to_state: SyncState, *, trigger: str, **meta: Any) -> None:
        prev = self.state.value
        t = StateTransition(
            from_state=prev,
            to_state=to_state,
            trigger=trigger,
            at=self._now(),
            uid=self._identity.uid if self._identity else None,
            meta=dict(meta),
        )
        log_event(logger, "sync.state_transition", message=json.dumps(t.to_log_event(), separators=(",", ":")))
        if prev != to_state:
            self.state.set(to_state)

    def _close_subscriptions(self) -> None:
        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            unsubscribe()

    async def _handle_identity(self, identity: Optional[Identity]) -> None:
        self._generation += 1
        generation = self._generation
        self._close_subscriptions()

        if identity is None:
            self._identity = None
            self.targets.set([])
            self.actuals.set([])
            self._transition(SyncState.READY, trigger="identity_cleared")
            return

        self._identity = identity
        self.targets.set([])
        self.actuals.set([])
        self._transition(SyncState.LOADING, trigger="identity_established")

        for kind in (EntryKind.TARGET, EntryKind.ACTUAL):
            path = user_collection_path(identity.uid, kind)
            unsubscribe = await self._store.subscribe(path, partial(self._on_snapshot, generation, kind))
            if generation != self._generation:
                # Identity changed while we were subscribing.
                unsubscribe()
                return
            self._unsubscribes.append(unsubscribe)

    def _on_snapshot(self, generation: int, kind: EntryKind, documents: list[Document]) -> None:
        if generation != self._generation:
            return

        entries: list[Entry] = []
        for doc in documents:
            try:
                entries.append(Entry.from_document(doc))
            except (KeyError, TypeError, ValueError) as e:
                log_event(
                    logger,
                    "sync.snapshot_document_skipped",
                    severity="WARNING",
                    collection=kind.value,
                    doc_id=str(doc.get("id")),
                    error=f"{type(e).__name__}: {e}",
                )

        log_event(logger, "sync.snapshot", severity="DEBUG", collection=kind.value, count=len(entries))
        self._collection(kind).set(sort_entries(entries))

        if kind == EntryKind.TARGET and self.state.value == SyncState.LOADING:
            self._transition(SyncState.READY, trigger="targets_snapshot", count=len(entries))

    # --- reads ------------------------------------------------------------

    def _collection(self, kind: EntryKind) -> Observable[list[Entry]]:
        return self.targets if kind == EntryKind.TARGET else self.actuals

    def get_targets(self) -> list[Entry]:
        return list(self.targets.value)

    def get_actuals(self) -> list[Entry]:
        return list(self.actuals.value)

    def new_id(self) -> str:
        return self._id_factory()

    # --- single-record writes ----------------------------------------------

    def _require_identity(self, operation: str) -> Identity:
        if self._identity is None:
            raise AuthenticationRequired(operation)
        return self._identity

    async def _write_through(self, operation: str, path: str, call) -> None:
        try:
            await call
        except PersistenceError as e:
            log_event(
                logger,
                "sync.write_failed",
                severity="ERROR",
                operation=operation,
                path=path,
                error=str(e),
            )
            raise

    async def add(self, kind: EntryKind, entry: Entry) -> Entry:
        identity = self._require_identity(f"add_{kind.value}")
        if entry.id is None:
            entry = entry.with_id(self.new_id())
        coll = self._collection(kind)
        coll.set(sort_entries([*coll.value, entry]))

        path = user_collection_path(identity.uid, kind)
        await self._write_through("write", path, self._store.write(path, entry.id, entry.to_document()))
        return entry

    async def update(self, kind: EntryKind, entry: Entry) -> Entry:
        identity = self._require_identity(f"update_{kind.value}")
        if entry.id is None:
            raise ValueError("update requires an entry id")
        coll = self._collection(kind)
        coll.set(sort_entries([entry if e.id == entry.id else e for e in coll.value]))

        path = user_collection_path(identity.uid, kind)
        await self._write_through("write", path, self._store.write(path, entry.id, entry.to_document()))
        return entry

    async def delete(self, kind: EntryKind, entry_id: str) -> None:
        identity = self._require_identity(f"delete_{kind.value}")
        coll = self._collection(kind)
        coll.set([e for e in coll.value if e.id != entry_id])

        path = user_collection_path(identity.uid, kind)
        await self._write_through("delete", path, self._store.delete(path, entry_id))

    async def add_target(self, entry: Entry) -> Entry:
        return await self.add(EntryKind.TARGET, entry)

    async def update_target(self, entry: Entry) -> Entry:
        return await self.update(EntryKind.TARGET, entry)

    async def delete_target(self, entry_id: str) -> None:
        await self.delete(EntryKind.TARGET, entry_id)

    async def add_actual(self, entry: Entry) -> Entry:
        return await self.add(EntryKind.ACTUAL, entry)

    async def update_actual(self, entry: Entry) -> Entry:
        return await self.update(EntryKind.ACTUAL, entry)

    async def delete_actual(self, entry_id: str) -> None:
        await self.delete(EntryKind.ACTUAL, entry_id)

    # --- bulk replace -----------------------------------------------------

    def _replace_operations(self, uid: str, kind: EntryKind, entries: Sequence[Entry]) -> list[BatchOperation]:
        path = user_collection_path(uid, kind)
        keep_ids = {e.id for e in entries}
        ops = [BatchOperation.delete(path, e.id) for e in self._collection(kind).value if e.id and e.id not in keep_ids]
        ops.extend(BatchOperation.set(path, e.id, e.to_document()) for e in entries)
        return ops

    def _with_ids(self, entries: Sequence[Entry]) -> list[Entry]:
        return [e if e.id else e.with_id(self.new_id()) for e in entries]

    async def _commit(self, operation: str, ops: list[BatchOperation], **fields: Any) -> None:
        try:
            await self._store.commit_batch(ops)
        except PersistenceError as e:
            log_event(logger, "sync.write_failed", severity="ERROR", operation=operation, error=str(e))
            raise
        log_event(logger, "sync.bulk_replace", operation=operation, ops=len(ops), **fields)

    async def set_entries(self, kind: EntryKind, entries: Sequence[Entry]) -> list[Entry]:
        """
        Replace a whole collection in one atomic batch: delete every currently-known
        document, then write every entry of `entries` (ids assigned where missing).
        """
        identity = self._require_identity(f"set_{kind.value}")
        new_entries = self._with_ids(entries)
        ops = self._replace_operations(identity.uid, kind, new_entries)
        await self._commit(f"set_{kind.value}", ops, count=len(new_entries))
        self._collection(kind).set(sort_entries(new_entries))
        return new_entries

    async def set_targets(self, entries: Sequence[Entry]) -> list[Entry]:
        return await self.set_entries(EntryKind.TARGET, entries)

    async def set_actuals(self, entries: Sequence[Entry]) -> list[Entry]:
        return await self.set_entries(EntryKind.ACTUAL, entries)

    async def clear_all(self) -> None:
        identity = self._require_identity("clear_all")
        ops = self._replace_operations(identity.uid, EntryKind.TARGET, [])
        ops.extend(self._replace_operations(identity.uid, EntryKind.ACTUAL, []))
        await self._commit("clear_all", ops)
        self.targets.set([])
        self.actuals.set([])
