from __future__ import annotations

import asyncio
import itertools
from typing import Callable

from stocktracker.identity import LocalIdentityProvider
from stocktracker.persistence import LocalDocumentStore
from stocktracker.sync import SyncCoordinator


async def drain(rounds: int = 5) -> None:
    """Let scheduled snapshot deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def sequential_ids(prefix: str = "id") -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


async def signed_in(
    store: LocalDocumentStore | None = None,
    *,
    uid: str = "u1",
) -> tuple[LocalDocumentStore, LocalIdentityProvider, SyncCoordinator]:
    store = store or LocalDocumentStore()
    provider = LocalIdentityProvider()
    coordinator = SyncCoordinator(store, provider, id_factory=sequential_ids())
    await coordinator.start()
    await provider.sign_in(uid)
    await coordinator.wait_until_ready()
    return store, provider, coordinator
