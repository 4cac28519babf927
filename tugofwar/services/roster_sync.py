from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from tugofwar.models.game import Player, Team
from tugofwar.state.keys import PLAYERS_PATH, player_path
from tugofwar.state.store import Connection, OnDisconnect, Store, StoreError, Subscription

log = logging.getLogger("roster.sync")

RosterListener = Callable[[Dict[str, Player]], Awaitable[None]]
EvictedHook = Callable[[], Awaitable[None]]

_UNSAFE = re.compile(r"[/.#$\[\]\s]+")


def make_player_id(nickname: str) -> str:
    """nickname + random suffix; unique with high probability only."""
    base = _UNSAFE.sub("_", nickname.strip()) or "player"
    return f"{base}_{uuid.uuid4().hex[:8]}"


def parse_roster(raw: Any) -> Dict[str, Player]:
    if not isinstance(raw, dict):
        return {}
    players: Dict[str, Player] = {}
    for player_id, entry in raw.items():
        try:
            players[player_id] = Player.model_validate(entry)
        except ValidationError:
            log.warning("roster_entry_invalid", extra={"playerId": player_id})
    return players


class RosterSync:
    """
    Local mirror of the shared player mapping plus this client's own entry.

    Eviction: while joined, a roster push without our entry triggers a
    fresh read of that entry. If the store confirms it is gone, someone
    else removed it (disconnect cleanup or a global reset), so local
    membership is cleared and `on_evicted` runs.
    """

    def __init__(
        self,
        store: Store,
        connection: Connection,
        on_evicted: Optional[EvictedHook] = None,
    ) -> None:
        self.store = store
        self.connection = connection
        self.on_evicted = on_evicted

        self.players: Dict[str, Player] = {}
        self.player_id: Optional[str] = None
        self.team: Optional[Team] = None

        self._cleanup: Optional[OnDisconnect] = None
        self._subscription: Optional[Subscription] = None
        self._listeners: List[RosterListener] = []

    @property
    def joined(self) -> bool:
        return self.player_id is not None

    # =========================
    # Subscription
    # =========================

    async def subscribe(self, on_change: Optional[RosterListener] = None) -> None:
        if on_change is not None:
            self._listeners.append(on_change)
        if self._subscription is None:
            self._subscription = await self.store.subscribe(PLAYERS_PATH, self._on_value)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._listeners.clear()

    async def _on_value(self, raw: Any) -> None:
        self.players = parse_roster(raw)

        player_id = self.player_id
        if player_id is not None and player_id not in self.players:
            # a push whose read began before our write lands here too; ask again
            if await self._entry_gone(player_id) and self.player_id == player_id:
                log.info("player_evicted", extra={"playerId": player_id})
                self._clear_local()
                if self.on_evicted is not None:
                    await self.on_evicted()

        for listener in list(self._listeners):
            await listener(self.players)

    async def _entry_gone(self, player_id: str) -> bool:
        try:
            return await self.store.read(player_path(player_id)) is None
        except StoreError:
            log.exception("player_entry_check_failed", extra={"playerId": player_id})
            return False

    # =========================
    # Membership
    # =========================

    async def select(self, nickname: str, team: Team) -> str:
        player = Player(nickname=nickname, team=team)
        if self.joined:
            await self.leave()

        player_id = make_player_id(player.nickname)
        path = player_path(player_id)

        cleanup = self.connection.on_disconnect(path)
        cleanup.remove()
        try:
            await self.store.set(path, player.model_dump())
        except StoreError:
            cleanup.cancel()
            raise

        self._cleanup = cleanup
        self.player_id = player_id
        self.team = team
        log.info("player_joined", extra={"playerId": player_id, "team": team})
        return player_id

    async def leave(self) -> None:
        if self.player_id is None:
            return
        player_id = self.player_id
        cleanup, self._cleanup = self._cleanup, None
        self._clear_local()
        try:
            await self.store.remove(player_path(player_id))
        except StoreError:
            # the disconnect obligation stays armed and removes the entry later
            log.exception("player_leave_failed", extra={"playerId": player_id})
            return
        if cleanup is not None:
            cleanup.cancel()
        log.info("player_left", extra={"playerId": player_id})

    def _clear_local(self) -> None:
        if self._cleanup is not None:
            self._cleanup.cancel()
        self._cleanup = None
        self.player_id = None
        self.team = None
