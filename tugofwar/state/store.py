# tugofwar/state/store.py

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

log = logging.getLogger("store")

Listener = Callable[[Any], Awaitable[None]]
UpdateFn = Callable[[Any], Any]


class StoreError(Exception):
    """A store operation failed (transport, permission, bad path)."""


@dataclass(frozen=True)
class TransactionResult:
    committed: bool
    value: Any


class Subscription(ABC):
    """Handle returned by `Store.subscribe`; `cancel()` stops future deliveries."""

    def __init__(self, path: str, listener: Listener) -> None:
        self.path = path
        self.listener = listener
        self.cancelled = False

    @abstractmethod
    def cancel(self) -> None:
        ...


class OnDisconnect:
    """
    Cleanup obligation for one path, executed when the owning
    connection closes unless it was cancelled first.
    """

    def __init__(self, connection: "Connection", path: str) -> None:
        self._connection = connection
        self.path = path

    def remove(self) -> None:
        self._connection._arm(self.path)

    def cancel(self) -> None:
        self._connection._disarm(self.path)


class Connection:
    """A client's link to the store; lives as long as the client does."""

    def __init__(self, store: "Store") -> None:
        self.id = uuid.uuid4().hex
        self.closed = False
        self._store = store
        self._armed: Dict[str, None] = {}

    def on_disconnect(self, path: str) -> OnDisconnect:
        return OnDisconnect(self, path)

    @property
    def armed(self) -> list[str]:
        return list(self._armed)

    def _arm(self, path: str) -> None:
        self._armed[path] = None

    def _disarm(self, path: str) -> None:
        self._armed.pop(path, None)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for path in list(self._armed):
            try:
                await self._store.remove(path)
                log.info("on_disconnect_removed", extra={"path": path, "connection": self.id})
            except StoreError:
                log.exception("on_disconnect_failed", extra={"path": path, "connection": self.id})
        self._armed.clear()


class Store(ABC):
    """
    Remote path -> JSON value mapping.

    - atomic read-modify-write (`transaction`)
    - direct writes (`set` / `remove`)
    - push subscriptions (current value first, then every change)
    - per-connection disconnect cleanup
    """

    @abstractmethod
    async def read(self, path: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def subscribe(self, path: str, listener: Listener) -> Subscription:
        ...

    @abstractmethod
    async def transaction(self, path: str, update: UpdateFn) -> TransactionResult:
        """
        Apply `update(current)` atomically, retrying on conflict.
        `update` must be pure; returning None abandons the transaction.
        """

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        ...

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    def connect(self) -> Connection:
        return Connection(self)

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None
