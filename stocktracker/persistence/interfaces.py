from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Optional, Sequence

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class BatchOperation:
    """One write or delete inside an atomic batch."""

    kind: Literal["set", "delete"]
    path: str
    id: str
    document: Optional[Mapping[str, Any]] = field(default=None)

    @classmethod
    def set(cls, path: str, doc_id: str, document: Mapping[str, Any]) -> "BatchOperation":
        return cls(kind="set", path=path, id=doc_id, document=dict(document))

    @classmethod
    def delete(cls, path: str, doc_id: str) -> "BatchOperation":
        return cls(kind="delete", path=path, id=doc_id)


class DocumentStore(ABC):
    """
    Storage abstraction for per-identity document collections.

    Contract:
    - `collection_path` is a slash-separated collection path (e.g. users/u1/targets).
    - `write` replaces the whole document stored under `id`.
    - `commit_batch` is all-or-nothing.
    - `subscribe` delivers the full collection contents on every change (and once
      right after subscribing). Deliveries arrive asynchronously on the event loop,
      never from inside the mutating call.
    - Store rejections raise `PersistenceError`.
    """

    @abstractmethod
    async def write(self, collection_path: str, doc_id: str, document: Mapping[str, Any]) -> None: ...

    @abstractmethod
    async def delete(self, collection_path: str, doc_id: str) -> None: ...

    @abstractmethod
    async def commit_batch(self, operations: Sequence[BatchOperation]) -> None: ...

    @abstractmethod
    async def subscribe(self, collection_path: str, on_snapshot: SnapshotCallback) -> Unsubscribe: ...
