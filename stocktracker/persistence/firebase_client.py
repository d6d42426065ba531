"""
Firebase Admin bootstrap for the Firestore store and ID-token verification.

Credentials come from Application Default Credentials (ADC):
  - GOOGLE_APPLICATION_CREDENTIALS, or `gcloud auth application-default login`
Project id: explicit argument, then FIREBASE_PROJECT_ID / GOOGLE_CLOUD_PROJECT,
then whatever ADC reports.

Running outside a managed runtime refuses to reach production Firestore unless
FIRESTORE_EMULATOR_HOST is set or ALLOW_PROD_FIRESTORE=1.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

import firebase_admin
import google.auth
from firebase_admin import credentials, firestore
from google.auth import exceptions as google_auth_exceptions

from stocktracker.common.config import allow_prod_firestore
from stocktracker.common.logging import log_event

logger = logging.getLogger(__name__)

_MANAGED_RUNTIME_VARS = ("K_SERVICE", "CLOUD_RUN_JOB", "FUNCTION_TARGET")
_lock = threading.Lock()


def is_local_execution() -> bool:
    if (os.getenv("ENV") or "").strip().lower() == "local":
        return True
    if any((os.getenv(name) or "").strip() for name in _MANAGED_RUNTIME_VARS):
        return False
    return not any(name.startswith("GAE_") for name in os.environ)


def require_firestore_emulator_or_allow_prod(*, caller: str) -> None:
    if not is_local_execution():
        return
    if (os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip() or allow_prod_firestore():
        return
    raise RuntimeError(
        f"{caller}: refusing to use production Firestore from a local run. "
        "Set FIRESTORE_EMULATOR_HOST (e.g. 127.0.0.1:8080) or ALLOW_PROD_FIRESTORE=1."
    )


def _project_id(explicit: Optional[str]) -> Optional[str]:
    project_id = explicit or os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT")
    if project_id:
        return project_id
    try:
        _, project_id = google.auth.default()
    except google_auth_exceptions.DefaultCredentialsError:
        return None
    return project_id or None


def init_firebase_admin(*, project_id: Optional[str] = None) -> None:
    """Initialize the default Firebase app once per process."""
    require_firestore_emulator_or_allow_prod(caller="init_firebase_admin")
    with _lock:
        if firebase_admin._apps:
            return
        try:
            cred = credentials.ApplicationDefault()
        except Exception as e:
            raise RuntimeError("Application Default Credentials are not available for Firebase Admin") from e

        resolved = _project_id(project_id)
        if not resolved:
            raise RuntimeError("Firebase project id is not set (FIREBASE_PROJECT_ID)")
        firebase_admin.initialize_app(cred, {"projectId": resolved})
        log_event(
            logger,
            "firebase.initialized",
            project_id=resolved,
            emulator=bool((os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip()),
        )


def get_firestore_client(*, project_id: Optional[str] = None):
    init_firebase_admin(project_id=project_id)
    return firestore.client()
