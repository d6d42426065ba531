from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from stocktracker.common.config import Settings
from stocktracker.common.errors import PersistenceError
from stocktracker.models import EntryKind
from stocktracker.persistence import BatchOperation, LocalDocumentStore, build_store, user_collection_path

from tests._support import drain

PATH = "users/u1/targets"


def test_documents_survive_reload_from_file(tmp_path: Path):
    data_file = tmp_path / "state" / "tracker.json"

    async def _run():
        store = LocalDocumentStore(data_file)
        await store.write(PATH, "t1", {"year": 2025, "month": 1, "total": 5})
        await store.commit_batch(
            [
                BatchOperation.set(PATH, "t2", {"year": 2025, "month": 2}),
                BatchOperation.delete(PATH, "t1"),
            ]
        )

    asyncio.run(_run())

    assert data_file.exists()
    assert not data_file.with_suffix(".json.tmp").exists()
    reloaded = LocalDocumentStore(data_file)
    assert reloaded.documents(PATH) == [{"year": 2025, "month": 2, "id": "t2"}]


def test_corrupt_file_raises_persistence_error(tmp_path: Path):
    data_file = tmp_path / "tracker.json"
    data_file.write_text("{oops", encoding="utf-8")

    with pytest.raises(PersistenceError):
        LocalDocumentStore(data_file)


def test_batch_is_all_or_nothing():
    async def _run():
        store = LocalDocumentStore()
        await store.write(PATH, "keep", {"year": 2025, "month": 1})

        with pytest.raises(PersistenceError):
            await store.commit_batch(
                [
                    BatchOperation.delete(PATH, "keep"),
                    BatchOperation.set(PATH, "new", {"year": 2025, "month": 2}),
                    BatchOperation(kind="bogus", path=PATH, id="x"),  # type: ignore[arg-type]
                ]
            )

        assert [d["id"] for d in store.documents(PATH)] == ["keep"]

    asyncio.run(_run())


def test_injected_failure_applies_once():
    async def _run():
        store = LocalDocumentStore()
        store.fail_next("delete")

        await store.write(PATH, "t1", {"year": 2025, "month": 1})
        with pytest.raises(PersistenceError) as excinfo:
            await store.delete(PATH, "t1")
        assert excinfo.value.operation == "delete"
        assert excinfo.value.path == PATH

        await store.delete(PATH, "t1")
        assert store.documents(PATH) == []

    asyncio.run(_run())


def test_subscribe_delivers_after_yield_and_stops_on_unsubscribe():
    async def _run():
        store = LocalDocumentStore()
        await store.write(PATH, "t1", {"year": 2025, "month": 1})
        seen: list[list[dict]] = []

        unsubscribe = await store.subscribe(PATH, seen.append)
        assert seen == []

        await drain()
        assert [[d["id"] for d in docs] for docs in seen] == [["t1"]]

        await store.write(PATH, "t2", {"year": 2025, "month": 2})
        unsubscribe()
        await drain()
        assert len(seen) == 1

    asyncio.run(_run())


def test_delivered_documents_are_copies():
    async def _run():
        store = LocalDocumentStore()
        await store.write(PATH, "t1", {"year": 2025, "month": 1})
        seen: list[list[dict]] = []
        await store.subscribe(PATH, seen.append)
        await drain()

        seen[0][0]["month"] = 12
        assert store.documents(PATH)[0]["month"] == 1

    asyncio.run(_run())


def test_user_collection_path():
    assert user_collection_path("abc", EntryKind.TARGET) == "users/abc/targets"
    assert user_collection_path(" abc ", EntryKind.ACTUAL) == "users/abc/actuals"
    for bad in ("", "  ", "a/b"):
        with pytest.raises(ValueError):
            user_collection_path(bad, EntryKind.TARGET)


def test_build_store_selects_local_backend(tmp_path: Path):
    store = build_store(Settings(data_file=str(tmp_path / "x.json")))

    assert isinstance(store, LocalDocumentStore)
    assert store.path == tmp_path / "x.json"


def test_build_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        build_store(Settings(store_backend="sqlite"))
