# tugofwar/state/redis_store.py

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from tugofwar.state.keys import (
    CHANGES_CHANNEL_PREFIX,
    COLLECTION_PATHS,
    LEAF_PATHS,
    split_path,
)
from tugofwar.state.store import (
    Listener,
    Store,
    StoreError,
    Subscription,
    TransactionResult,
    UpdateFn,
)

log = logging.getLogger("store.redis")

# (command, redis_key, *args)
Op = Tuple[Any, ...]


# =========================
# LAYOUT
# =========================

def _norm(path: str) -> str:
    return "/".join(split_path(path))


def _layout_below(path: str) -> List[str]:
    prefix = _norm(path) + "/"
    return sorted(p for p in LEAF_PATHS | COLLECTION_PATHS if p.startswith(prefix))


def locate(path: str) -> Tuple[str, str, Optional[str]]:
    """
    Map a store path to its Redis representation.

    - ("collection", key, None): whole hash
    - ("field", key, field):     one entry of a hash
    - ("tree", path, None):      ancestor of several layout keys
    - ("key", key, None):        plain string key
    """
    path = _norm(path)
    if path in COLLECTION_PATHS:
        return ("collection", path, None)
    parent, _, child = path.rpartition("/")
    if parent in COLLECTION_PATHS:
        return ("field", parent, child)
    if _layout_below(path):
        return ("tree", path, None)
    return ("key", path, None)


def plan_write(path: str, value: Any) -> List[Op]:
    """Redis commands that make `path` hold `value` (None deletes)."""
    kind, key, field = locate(path)

    if kind == "collection":
        ops: List[Op] = [("delete", key)]
        if isinstance(value, dict) and value:
            ops.append(("hset", key, {k: json.dumps(v) for k, v in value.items()}))
        return ops

    if kind == "field":
        if value is None:
            return [("hdel", key, field)]
        return [("hset", key, {field: json.dumps(value)})]

    if kind == "tree":
        ops = []
        for child in _layout_below(key):
            sub: Any = value
            for part in split_path(child[len(key) + 1:]):
                sub = sub.get(part) if isinstance(sub, dict) else None
            ops.extend(plan_write(child, sub))
        return ops

    if value is None:
        return [("delete", key)]
    return [("set", key, json.dumps(value))]


def channels_for(path: str) -> List[str]:
    kind, key, _ = locate(path)
    if kind == "tree":
        return [CHANGES_CHANNEL_PREFIX + k for k in _layout_below(key)]
    return [CHANGES_CHANNEL_PREFIX + key]


def _decode(raw: Any) -> Optional[Any]:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return json.loads(raw)


# =========================
# SUBSCRIPTION
# =========================

class _RedisSubscription(Subscription):
    """One pub/sub loop task per subscriber; every message triggers a fresh read."""

    def __init__(self, store: "RedisStore", path: str, listener: Listener) -> None:
        super().__init__(path, listener)
        self._store = store
        self._channels = channels_for(path)
        self._ready = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._store._detach(self)
        self._task.cancel()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    async def _loop(self) -> None:
        pubsub = self._store.redis.pubsub()
        try:
            await pubsub.subscribe(*self._channels)
        except RedisError:
            log.exception("redis_subscribe_failed", extra={"path": self.path})
            return
        finally:
            self._ready.set()
        try:
            await self._deliver()
            while not self.cancelled:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if not msg:
                    continue
                await self._deliver()
        except RedisError:
            log.exception("redis_subscription_lost", extra={"path": self.path})
        finally:
            try:
                await pubsub.unsubscribe(*self._channels)
                await pubsub.aclose()
            except RedisError:
                log.debug("redis_unsubscribe_failed", extra={"path": self.path}, exc_info=True)

    async def _deliver(self) -> None:
        try:
            value = await self._store.read(self.path)
            await self.listener(value)
        except Exception:
            log.exception("redis_listener_failed", extra={"path": self.path})


# =========================
# STORE
# =========================

class RedisStore(Store):
    """
    Store backed by Redis.

    - leaf paths are string keys holding JSON
    - collection paths are hashes (one field per child)
    - every write publishes on `changes:<key>`
    - transactions use WATCH / MULTI / EXEC
    """

    def __init__(self, redis: Redis, *, max_retries: int = 25) -> None:
        self.redis = redis
        self.max_retries = max_retries
        self._subscriptions: List[_RedisSubscription] = []

    async def ping(self) -> None:
        try:
            await self.redis.ping()
        except RedisError as exc:
            raise StoreError("redis unreachable") from exc
        log.info("redis_connected")

    async def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.cancel()
        try:
            await self.redis.aclose()
        except RedisError:
            log.exception("redis_close_failed")

    # =========================
    # READ
    # =========================

    async def read(self, path: str) -> Optional[Any]:
        kind, key, field = locate(path)
        try:
            if kind == "collection":
                raw = await self.redis.hgetall(key)
                if not raw:
                    return None
                return {
                    (k.decode("utf-8") if isinstance(k, bytes) else k): _decode(v)
                    for k, v in raw.items()
                }
            if kind == "field":
                return _decode(await self.redis.hget(key, field))
            if kind == "tree":
                tree: Dict[str, Any] = {}
                for child in _layout_below(key):
                    value = await self.read(child)
                    if value is None:
                        continue
                    node = tree
                    parts = split_path(child[len(key) + 1:])
                    for part in parts[:-1]:
                        node = node.setdefault(part, {})
                    node[parts[-1]] = value
                return tree or None
            return _decode(await self.redis.get(key))
        except RedisError as exc:
            log.exception("redis_read_error", extra={"path": path})
            raise StoreError(f"read failed: {path}") from exc
        except json.JSONDecodeError:
            log.error("redis_read_decode_error", extra={"path": path})
            return None

    # =========================
    # WRITE
    # =========================

    async def set(self, path: str, value: Any) -> None:
        ops = plan_write(path, value)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for op in ops:
                    if op[0] == "hset":
                        pipe.hset(op[1], mapping=op[2])
                    else:
                        getattr(pipe, op[0])(*op[1:])
                for key in sorted({op[1] for op in ops}):
                    pipe.publish(CHANGES_CHANNEL_PREFIX + key, key)
                await pipe.execute()
        except RedisError as exc:
            log.exception("redis_set_error", extra={"path": path})
            raise StoreError(f"set failed: {path}") from exc

    async def transaction(self, path: str, update: UpdateFn) -> TransactionResult:
        kind, key, field = locate(path)
        if kind not in ("key", "field"):
            raise StoreError(f"transactions need a single value path: {path}")

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for attempt in range(self.max_retries):
                    try:
                        await pipe.watch(key)
                        if kind == "field":
                            current = _decode(await pipe.hget(key, field))
                        else:
                            current = _decode(await pipe.get(key))

                        desired = update(current)
                        if desired is None:
                            await pipe.unwatch()
                            return TransactionResult(committed=False, value=current)

                        pipe.multi()
                        if kind == "field":
                            pipe.hset(key, field, json.dumps(desired))
                        else:
                            pipe.set(key, json.dumps(desired))
                        pipe.publish(CHANGES_CHANNEL_PREFIX + key, key)
                        await pipe.execute()
                        return TransactionResult(committed=True, value=desired)
                    except WatchError:
                        log.debug("redis_transaction_conflict", extra={"path": path, "attempt": attempt})
                        continue
        except RedisError as exc:
            log.exception("redis_transaction_error", extra={"path": path})
            raise StoreError(f"transaction failed: {path}") from exc

        log.warning("redis_transaction_abandoned", extra={"path": path, "retries": self.max_retries})
        return TransactionResult(committed=False, value=None)

    # =========================
    # PUB / SUB
    # =========================

    async def subscribe(self, path: str, listener: Listener) -> Subscription:
        sub = _RedisSubscription(self, path, listener)
        self._subscriptions.append(sub)
        await sub.wait_ready()
        return sub

    def _detach(self, sub: _RedisSubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
