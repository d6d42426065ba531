from __future__ import annotations

from stocktracker.models import EntryKind


def user_collection_path(uid: str, kind: EntryKind) -> str:
    """
    Build an identity-scoped collection path.

    Example:
      user_collection_path("uid123", EntryKind.TARGET)
      => users/uid123/targets
    """
    uid = (uid or "").strip()
    if not uid or "/" in uid:
        raise ValueError(f"invalid uid for collection path: {uid!r}")
    return f"users/{uid}/{EntryKind(kind).value}"
