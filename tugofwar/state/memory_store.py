# tugofwar/state/memory_store.py

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from tugofwar.state.keys import is_related, split_path
from tugofwar.state.store import (
    Listener,
    Store,
    Subscription,
    TransactionResult,
    UpdateFn,
)

log = logging.getLogger("store.memory")


class _MemorySubscription(Subscription):
    """
    Queue + pump task per subscriber.
    Each queued item means "the path changed"; the pump reads the
    value at delivery time, so bursts coalesce into the latest value.
    """

    def __init__(self, store: "MemoryStore", path: str, listener: Listener) -> None:
        super().__init__(path, listener)
        self._store = store
        self._queue: asyncio.Queue[None] = asyncio.Queue()
        self._busy = False
        self._task = asyncio.create_task(self._pump())

    @property
    def pending(self) -> bool:
        return not self.cancelled and (self._queue.qsize() > 0 or self._busy)

    def notify(self) -> None:
        if not self.cancelled:
            self._queue.put_nowait(None)

    async def join(self) -> None:
        await self._queue.join()

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._store._detach(self)
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._task.cancel()

    async def _pump(self) -> None:
        while True:
            await self._queue.get()
            self._busy = True
            try:
                while not self._queue.empty():
                    self._queue.get_nowait()
                    self._queue.task_done()
                await self.listener(self._store._get(self.path))
            except Exception:
                log.exception("memory_listener_failed", extra={"path": self.path})
            finally:
                self._busy = False
                self._queue.task_done()


class MemoryStore(Store):
    """
    In-process store.

    Values live in a nested dict. Every write bumps a version counter on
    the written path, its ancestors and its descendants; transactions
    compare that version before committing and retry on conflict.
    """

    def __init__(self, *, max_retries: int = 25) -> None:
        self.max_retries = max_retries
        self._root: Dict[str, Any] = {}
        self._versions: Dict[str, int] = {}
        self._subscriptions: List[_MemorySubscription] = []

    # =========================
    # READ / WRITE
    # =========================

    async def read(self, path: str) -> Optional[Any]:
        return self._get(path)

    async def set(self, path: str, value: Any) -> None:
        self._put(path, value)

    async def transaction(self, path: str, update: UpdateFn) -> TransactionResult:
        self._versions.setdefault(path, 0)
        for attempt in range(self.max_retries):
            version = self._versions.get(path, 0)
            current = self._get(path)
            desired = update(current)
            if desired is None:
                return TransactionResult(committed=False, value=current)

            # other writers interleave here, exactly like a round-trip would
            await asyncio.sleep(0)

            if self._versions.get(path, 0) != version:
                log.debug("memory_transaction_conflict", extra={"path": path, "attempt": attempt})
                continue

            self._put(path, desired)
            return TransactionResult(committed=True, value=copy.deepcopy(desired))

        log.warning("memory_transaction_abandoned", extra={"path": path, "retries": self.max_retries})
        return TransactionResult(committed=False, value=self._get(path))

    # =========================
    # PUB / SUB
    # =========================

    async def subscribe(self, path: str, listener: Listener) -> Subscription:
        sub = _MemorySubscription(self, path, listener)
        self._subscriptions.append(sub)
        sub.notify()
        return sub

    async def drain(self) -> None:
        """Wait until every queued notification has been delivered."""
        while True:
            pending = [s for s in self._subscriptions if s.pending]
            if not pending:
                return
            await asyncio.gather(*(s.join() for s in pending))

    async def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.cancel()

    def _detach(self, sub: _MemorySubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    # =========================
    # TREE
    # =========================

    def _get(self, path: str) -> Optional[Any]:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        if node == {}:
            return None
        return copy.deepcopy(node)

    def _put(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            raise ValueError("cannot write the store root")

        if value is None:
            self._delete(parts)
        else:
            node = self._root
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[parts[-1]] = copy.deepcopy(value)

        self._bump(path)
        for sub in list(self._subscriptions):
            if is_related(sub.path, path):
                sub.notify()

    def _delete(self, parts: List[str]) -> None:
        trail = []
        node: Any = self._root
        for part in parts[:-1]:
            if not isinstance(node, dict) or part not in node:
                return
            trail.append((node, part))
            node = node[part]
        if isinstance(node, dict):
            node.pop(parts[-1], None)
        # prune emptied parents
        for parent, key in reversed(trail):
            if parent[key] == {}:
                del parent[key]

    def _bump(self, path: str) -> None:
        parts = split_path(path)
        touched = {"/".join(parts[:i]) for i in range(1, len(parts) + 1)}
        touched.update(p for p in self._versions if is_related(p, path))
        for p in touched:
            self._versions[p] = self._versions.get(p, 0) + 1
