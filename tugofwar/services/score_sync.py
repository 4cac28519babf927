from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional

from tugofwar.state.keys import SCORE_PATH
from tugofwar.state.store import Store, StoreError, Subscription, TransactionResult

log = logging.getLogger("score.sync")

ScoreListener = Callable[[int], Awaitable[None]]


def as_score(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


async def increment_score(store: Store, delta: int) -> TransactionResult:
    """Atomically add `delta` to the shared score. Raises StoreError."""
    return await store.transaction(SCORE_PATH, lambda current: as_score(current) + delta)


class ScoreSync:
    """
    Local mirror of the shared score.

    The mirror is written only by the subscription; `apply_delta`
    never touches it, so the visible score is always a confirmed value.
    """

    def __init__(self, store: Store) -> None:
        self.store = store
        self.value: int = 0
        self._subscription: Optional[Subscription] = None
        self._listeners: List[ScoreListener] = []

    async def subscribe(self, on_change: Optional[ScoreListener] = None) -> None:
        if on_change is not None:
            self._listeners.append(on_change)
        if self._subscription is None:
            self._subscription = await self.store.subscribe(SCORE_PATH, self._on_value)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._listeners.clear()

    async def _on_value(self, raw: Any) -> None:
        self.value = as_score(raw)
        for listener in list(self._listeners):
            await listener(self.value)

    async def apply_delta(self, sign: int) -> Optional[TransactionResult]:
        try:
            result = await increment_score(self.store, sign)
        except StoreError:
            log.exception("score_delta_failed", extra={"delta": sign})
            return None

        if not result.committed:
            log.warning("score_delta_not_committed", extra={"delta": sign})
        else:
            log.debug("score_delta_committed", extra={"delta": sign, "score": result.value})
        return result

    async def reset(self) -> None:
        try:
            await self.store.set(SCORE_PATH, 0)
            log.info("score_reset")
        except StoreError:
            log.exception("score_reset_failed")
