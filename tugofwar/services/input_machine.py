from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from tugofwar.models.game import TEAMS, LockKind, Phase, Team
from tugofwar.services.rules import GameRules, pull_sign


@dataclass(frozen=True)
class PressResult:
    key: str
    expected: str
    correct: bool
    delta: int


def normalize_key(key: str) -> str:
    """'f', 'F' and DOM codes like 'KeyF' all become 'F'."""
    key = (key or "").strip()
    if len(key) == 4 and key.startswith("Key"):
        key = key[3:]
    return key.upper()


class InputStateMachine:
    """
    Per-player input state.

    Purely local and clock-free: every call that depends on time takes
    `now` (monotonic seconds). Timed transitions are stored as deadlines
    and applied by `tick(now)`; `next_deadline()` tells the owner when
    the next one is due.
    """

    def __init__(self, rules: GameRules, rng: Optional[random.Random] = None) -> None:
        self.rules = rules
        self._rng = rng or random.Random()

        self.team: Optional[Team] = None
        self.queue: Deque[str] = deque()
        self.history: Deque[str] = deque(maxlen=rules.history_size)
        self.hearts: int = rules.max_hearts

        self.lock_kind: Optional[LockKind] = None
        self.locked_until: Optional[float] = None
        self.bump_until: Optional[float] = None
        self.wrong_key_until: Optional[float] = None

    # =========================
    # State
    # =========================

    @property
    def phase(self) -> Phase:
        if self.team is None:
            return "no_team"
        if self.locked_until is not None:
            return "locked"
        return "idle"

    @property
    def locked(self) -> bool:
        return self.locked_until is not None

    @property
    def head(self) -> Optional[str]:
        return self.queue[0] if self.queue else None

    def bump_active(self, now: float) -> bool:
        return self.bump_until is not None and now < self.bump_until

    def wrong_key_active(self, now: float) -> bool:
        return self.wrong_key_until is not None and now < self.wrong_key_until

    def next_deadline(self) -> Optional[float]:
        pending = [
            t for t in (self.locked_until, self.bump_until, self.wrong_key_until)
            if t is not None
        ]
        return min(pending) if pending else None

    # =========================
    # Transitions
    # =========================

    def join(self, team: Team) -> None:
        if team not in TEAMS:
            raise ValueError(f"unknown team: {team!r}")
        self.reset()
        self.team = team
        for _ in range(self.rules.queue_size):
            self.queue.append(self._random_key())

    def leave(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.team = None
        self.queue.clear()
        self.history.clear()
        self.hearts = self.rules.max_hearts
        self.lock_kind = None
        self.locked_until = None
        self.bump_until = None
        self.wrong_key_until = None

    def tick(self, now: float) -> bool:
        """Apply every transition due at `now`. Returns True if anything changed."""
        changed = False

        if self.locked_until is not None and now >= self.locked_until:
            if self.lock_kind == "long":
                self.hearts = self.rules.max_hearts
            self.lock_kind = None
            self.locked_until = None
            changed = True

        if self.bump_until is not None and now >= self.bump_until:
            self.bump_until = None
            changed = True

        if self.wrong_key_until is not None and now >= self.wrong_key_until:
            self.wrong_key_until = None
            changed = True

        return changed

    def press(self, key: str, now: float) -> Optional[PressResult]:
        """
        Feed one key press. Returns the score delta to submit, or None
        when the press was ignored (foreign key, no team, locked).
        """
        key = normalize_key(key)
        if len(key) != 1 or key not in self.rules.alphabet:
            return None

        self.tick(now)
        if self.team is None or self.locked:
            return None

        expected = self.queue.popleft()
        self.queue.append(self._random_key())
        sign = pull_sign(self.team)

        if key == expected:
            self.history.append(expected)
            self.bump_until = now + self.rules.bump_s
            return PressResult(key=key, expected=expected, correct=True, delta=sign)

        # the missed prompt is discarded, the penalty pulls for the other team
        self.hearts -= 1
        self.wrong_key_until = now + self.rules.wrong_key_s
        if self.hearts > 0:
            self.lock_kind = "short"
            self.locked_until = now + self.rules.short_lockout_s
        else:
            self.hearts = 0
            self.lock_kind = "long"
            self.locked_until = now + self.rules.long_lockout_s
        return PressResult(key=key, expected=expected, correct=False, delta=-sign)

    def _random_key(self) -> str:
        return self._rng.choice(self.rules.alphabet)
