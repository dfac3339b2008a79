"""Control-plane init lock.

Exactly one reconciliation per cluster may initialise the control plane.
The lock is a create-if-absent entry in a config store named
``<cluster>-controlplane``; whoever creates it wins, forever. There is no
release: once the control plane is up the cluster's own readiness marker
takes over.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from machinist.protocols import ConfigStore
    from machinist.types import Cluster

log = logger.bind(component="init-locker")


def lock_name(cluster_name: str) -> str:
    return f"{cluster_name}-controlplane"


class ConfigStoreInitLocker:
    """ControlPlaneInitLocker backed by a create-if-absent config store."""

    def __init__(self, store: ConfigStore) -> None:
        self._store = store

    async def acquire(self, cluster: Cluster) -> bool:
        name = lock_name(cluster.name)
        lock_log = log.bind(namespace=cluster.namespace, cluster=cluster.name, entry=name)

        try:
            if await self._store.exists(cluster.namespace, name):
                return False
        except Exception:
            lock_log.exception("Error checking for control plane lock existence")
            return False

        lock_log.info("Attempting to create control plane lock")
        try:
            created = await self._store.create(cluster.namespace, name, owner=cluster.key)
        except Exception:
            lock_log.exception("Error creating control plane lock")
            return False

        if not created:
            lock_log.info("Control plane lock already exists")
        return created


class InMemoryConfigStore:
    """In-process ConfigStore. Safe for concurrent coroutines on one loop."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def exists(self, namespace: str, name: str) -> bool:
        return (namespace, name) in self._entries

    async def create(self, namespace: str, name: str, owner: str) -> bool:
        async with self._lock:
            key = (namespace, name)
            if key in self._entries:
                return False
            self._entries[key] = owner
            return True

    def owner(self, namespace: str, name: str) -> str | None:
        return self._entries.get((namespace, name))
