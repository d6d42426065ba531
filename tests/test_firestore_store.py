from __future__ import annotations

import asyncio
import os
import uuid

import pytest
from google.api_core import exceptions as gexc

from stocktracker.common.errors import PersistenceError
from stocktracker.persistence import BatchOperation
from stocktracker.persistence import firestore_store
from stocktracker.persistence.firestore_store import FirestoreDocumentStore

from tests._support import drain


class _FakeSnap:
    def __init__(self, doc_id: str, data: dict) -> None:
        self.id = doc_id
        self._data = data

    def to_dict(self) -> dict:
        return dict(self._data)


class _FakeWatch:
    def __init__(self) -> None:
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


class _FakeRef:
    def __init__(self, client: "_FakeClient", path: str, doc_id: str) -> None:
        self.client = client
        self.path = path
        self.id = doc_id

    def set(self, doc: dict) -> None:
        if self.client.fail:
            raise self.client.error
        self.client.calls.append(("set", self.path, self.id, doc))

    def delete(self) -> None:
        self.client.calls.append(("delete", self.path, self.id, None))


class _FakeCollection:
    def __init__(self, client: "_FakeClient", path: str) -> None:
        self.client = client
        self.path = path

    def document(self, doc_id: str) -> _FakeRef:
        return _FakeRef(self.client, self.path, doc_id)

    def on_snapshot(self, listener):
        # The SDK invokes listeners from its own thread.
        listener([_FakeSnap("d1", {"year": 2025, "month": 1})], [], None)
        return self.client.watch


class _FakeBatch:
    def __init__(self, client: "_FakeClient") -> None:
        self.client = client
        self.ops: list[tuple] = []

    def set(self, ref: _FakeRef, doc: dict) -> None:
        self.ops.append(("set", ref.path, ref.id, doc))

    def delete(self, ref: _FakeRef) -> None:
        self.ops.append(("delete", ref.path, ref.id, None))

    def commit(self) -> None:
        self.client.calls.append(("commit", tuple(self.ops)))


class _FakeClient:
    def __init__(self) -> None:
        self.fail = False
        self.error: Exception = gexc.ServiceUnavailable("firestore down")
        self.calls: list[tuple] = []
        self.watch = _FakeWatch()

    def collection(self, path: str) -> _FakeCollection:
        return _FakeCollection(self, path)

    def batch(self) -> _FakeBatch:
        return _FakeBatch(self)


def test_write_stamps_document_id():
    client = _FakeClient()
    store = FirestoreDocumentStore(client)

    asyncio.run(store.write("users/u1/targets", "t1", {"year": 2025, "month": 1}))

    assert client.calls == [("set", "users/u1/targets", "t1", {"year": 2025, "month": 1, "id": "t1"})]


def test_api_errors_surface_as_persistence_error():
    client = _FakeClient()
    client.fail = True
    store = FirestoreDocumentStore(client)

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(store.write("users/u1/targets", "t1", {}))

    assert excinfo.value.operation == "write"
    assert isinstance(excinfo.value.cause, gexc.ServiceUnavailable)


def test_retry_exhaustion_surfaces_as_persistence_error():
    client = _FakeClient()
    client.fail = True
    client.error = gexc.RetryError("deadline exceeded", gexc.DeadlineExceeded("slow"))
    store = FirestoreDocumentStore(client)

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(store.write("users/u1/targets", "t1", {}))

    assert isinstance(excinfo.value.cause, gexc.RetryError)


def test_client_bootstrap_failure_surfaces_as_persistence_error(monkeypatch):
    def _no_client(*, project_id=None):
        raise RuntimeError("Firebase project id is not set (FIREBASE_PROJECT_ID)")

    monkeypatch.setattr(firestore_store, "get_firestore_client", _no_client)
    store = FirestoreDocumentStore(project_id=None)

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(store.write("users/u1/targets", "t1", {}))
    assert excinfo.value.operation == "write"
    assert isinstance(excinfo.value.cause, RuntimeError)

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(store.commit_batch([BatchOperation.delete("users/u1/targets", "t1")]))
    assert excinfo.value.operation == "commit_batch"


def test_commit_batch_sends_one_batch():
    client = _FakeClient()
    store = FirestoreDocumentStore(client)

    asyncio.run(
        store.commit_batch(
            [
                BatchOperation.delete("users/u1/targets", "old"),
                BatchOperation.set("users/u1/targets", "new", {"year": 2025, "month": 1}),
            ]
        )
    )

    assert client.calls == [
        (
            "commit",
            (
                ("delete", "users/u1/targets", "old", None),
                ("set", "users/u1/targets", "new", {"year": 2025, "month": 1, "id": "new"}),
            ),
        )
    ]


def test_empty_batch_is_not_committed():
    client = _FakeClient()
    asyncio.run(FirestoreDocumentStore(client).commit_batch([]))
    assert client.calls == []


def test_snapshot_listener_is_marshalled_onto_loop():
    client = _FakeClient()
    store = FirestoreDocumentStore(client)
    seen: list[list[dict]] = []

    async def _run():
        unsubscribe = await store.subscribe("users/u1/targets", seen.append)
        await drain()
        unsubscribe()

    asyncio.run(_run())

    assert seen == [[{"year": 2025, "month": 1, "id": "d1"}]]
    assert client.watch.unsubscribed is True


def test_firestore_emulator_round_trip():
    """Runs only under the Firestore emulator (FIRESTORE_EMULATOR_HOST)."""
    if not os.getenv("FIRESTORE_EMULATOR_HOST"):
        pytest.skip("FIRESTORE_EMULATOR_HOST is not set; run under Firestore emulator")

    from google.cloud import firestore

    project = os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("FIREBASE_PROJECT_ID") or "demo-stocktracker"
    store = FirestoreDocumentStore(firestore.Client(project=project))
    path = f"users/{uuid.uuid4().hex}/targets"
    seen: list[list[dict]] = []

    async def _run():
        unsubscribe = await store.subscribe(path, seen.append)
        await store.commit_batch(
            [
                BatchOperation.set(path, "t1", {"year": 2025, "month": 1, "total": 1}),
                BatchOperation.set(path, "t2", {"year": 2025, "month": 2, "total": 2}),
            ]
        )
        await store.delete(path, "t1")
        for _ in range(50):
            if seen and [d["id"] for d in seen[-1]] == ["t2"]:
                break
            await asyncio.sleep(0.1)
        unsubscribe()

    asyncio.run(_run())

    assert [d["id"] for d in seen[-1]] == ["t2"]
