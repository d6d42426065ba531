"""
Document store contract plus the local (memory / JSON file) and Firestore backends.
"""

from __future__ import annotations

from .factory import build_store
from .interfaces import BatchOperation, DocumentStore
from .local_store import LocalDocumentStore
from .paths import user_collection_path

__all__ = [
    "BatchOperation",
    "DocumentStore",
    "LocalDocumentStore",
    "build_store",
    "user_collection_path",
]
