from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from tugofwar.models.game import GameView, Player, Team, validate_nickname
from tugofwar.services.input_machine import InputStateMachine, PressResult
from tugofwar.services.roster_sync import RosterSync
from tugofwar.services.rules import GameRules, winner_for, winner_label
from tugofwar.services.score_sync import ScoreSync
from tugofwar.state.keys import GAME_ROOT
from tugofwar.state.store import Store, StoreError

log = logging.getLogger("game.session")

ViewListener = Callable[[GameView], Awaitable[None]]
Clock = Callable[[], float]


class SessionError(Exception):
    """A client asked for something its current state does not allow."""


class GameSession:
    """
    One client of the game.

    Composes the score mirror, the roster mirror and the input state
    machine; owns the join / team / leave lifecycle, win detection, reset
    and the timers that drive the machine's deadlines.
    """

    def __init__(
        self,
        store: Store,
        rules: GameRules,
        *,
        on_view: Optional[ViewListener] = None,
        rng: Optional[random.Random] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.store = store
        self.rules = rules
        self.on_view = on_view
        self.clock = clock

        self.connection = store.connect()
        self.score = ScoreSync(store)
        self.roster = RosterSync(store, self.connection, on_evicted=self._on_evicted)
        self.machine = InputStateMachine(rules, rng)

        self.nickname: Optional[str] = None
        self._wakeup: Optional[asyncio.Task] = None
        self._closed = False

    # =========================
    # Lifecycle
    # =========================

    async def start(self) -> None:
        await self.score.subscribe(self._on_score)
        await self.roster.subscribe(self._on_roster)
        log.info("session_started", extra={"connection": self.connection.id})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_wakeup()
        self.score.close()
        self.roster.close()
        # runs the armed disconnect cleanup (our roster entry)
        await self.connection.close()
        log.info("session_closed", extra={"connection": self.connection.id})

    # =========================
    # Win detection
    # =========================

    @property
    def winner(self) -> Optional[Team]:
        return winner_for(self.score.value, self.rules.win_score)

    # =========================
    # Join / team / leave
    # =========================

    async def join(self, nickname: str) -> None:
        try:
            self.nickname = validate_nickname(nickname or "")
        except ValidationError:
            raise SessionError("nickname must be 1 to 32 characters")
        await self._emit()

    async def select_team(self, team: Team) -> None:
        if self.nickname is None:
            raise SessionError("join with a nickname first")
        try:
            await self.roster.select(self.nickname, team)
        except StoreError:
            log.exception("select_team_failed", extra={"team": team})
            return
        self.machine.join(team)
        self._cancel_wakeup()
        await self._emit()

    async def leave(self) -> None:
        if not self.roster.joined and self.machine.team is None:
            return
        await self.roster.leave()
        self.machine.leave()
        self._cancel_wakeup()
        await self._emit()

    async def _on_evicted(self) -> None:
        self.machine.leave()
        self._cancel_wakeup()
        await self._emit()

    # =========================
    # Input
    # =========================

    async def press(self, key: str) -> Optional[PressResult]:
        if self.winner is not None:
            return None

        result = self.machine.press(key, self.clock())
        if result is None:
            return None

        self._schedule_wakeup()
        await self._emit()
        await self.score.apply_delta(result.delta)
        return result

    # =========================
    # Reset
    # =========================

    async def reset_game(self) -> None:
        """Score to 0 and every player ejected, in one write."""
        try:
            await self.store.set(GAME_ROOT, {"score": 0, "players": {}})
            log.info("game_reset", extra={"connection": self.connection.id})
        except StoreError:
            log.exception("game_reset_failed")

    # =========================
    # View
    # =========================

    def snapshot(self) -> GameView:
        now = self.clock()
        self.machine.tick(now)
        winner = self.winner
        return GameView(
            score=self.score.value,
            winner=winner,
            winnerLabel=winner_label(winner),
            winScore=self.rules.win_score,
            nickname=self.nickname,
            playerId=self.roster.player_id,
            team=self.machine.team,
            phase=self.machine.phase,
            queue=list(self.machine.queue),
            history=list(self.machine.history),
            hearts=self.machine.hearts,
            maxHearts=self.rules.max_hearts,
            locked=self.machine.locked,
            lockKind=self.machine.lock_kind,
            bump=self.machine.bump_active(now),
            wrongKey=self.machine.wrong_key_active(now),
            players=dict(self.roster.players),
        )

    async def _on_score(self, score: int) -> None:
        await self._emit()

    async def _on_roster(self, players: Dict[str, Player]) -> None:
        await self._emit()

    async def _emit(self) -> None:
        if self.on_view is None or self._closed:
            return
        try:
            await self.on_view(self.snapshot())
        except Exception:
            log.exception("view_push_failed", extra={"connection": self.connection.id})

    # =========================
    # Timers
    # =========================

    def _schedule_wakeup(self) -> None:
        self._cancel_wakeup()
        deadline = self.machine.next_deadline()
        if deadline is None or self._closed:
            return
        self._wakeup = asyncio.create_task(self._wake_at(deadline))

    def _cancel_wakeup(self) -> None:
        if self._wakeup is not None and self._wakeup is not asyncio.current_task():
            self._wakeup.cancel()
        self._wakeup = None

    async def _wake_at(self, deadline: float) -> None:
        await asyncio.sleep(max(0.0, deadline - self.clock()))
        self._wakeup = None
        if self.machine.tick(self.clock()):
            await self._emit()
        self._schedule_wakeup()
