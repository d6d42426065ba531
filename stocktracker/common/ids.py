from __future__ import annotations

import random
import string
import time

_ALPHABET = string.ascii_lowercase + string.digits


def new_id() -> str:
    """
    Best-effort unique document id: epoch millis plus a 9-char random suffix.

    Collisions are possible in principle but negligible for a single user's
    edit rate. Not suitable where uniqueness must be guaranteed.
    """
    suffix = "".join(random.choice(_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"
