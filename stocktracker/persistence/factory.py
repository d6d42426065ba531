from __future__ import annotations

import logging

from stocktracker.common.config import STORE_FIRESTORE, STORE_LOCAL, Settings
from stocktracker.common.logging import log_event

from .interfaces import DocumentStore
from .local_store import LocalDocumentStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> DocumentStore:
    """Select the document store backend named by `settings.store_backend`."""
    if settings.store_backend == STORE_LOCAL:
        log_event(logger, "store.selected", backend=STORE_LOCAL, data_file=settings.data_file)
        return LocalDocumentStore(settings.data_file)
    if settings.store_backend == STORE_FIRESTORE:
        # Deferred so local-only installs never import the Google SDKs.
        from .firestore_store import FirestoreDocumentStore  # noqa: WPS433

        log_event(logger, "store.selected", backend=STORE_FIRESTORE, project_id=settings.firebase_project_id)
        return FirestoreDocumentStore(project_id=settings.firebase_project_id)
    raise ValueError(f"unknown store backend: {settings.store_backend!r}")
