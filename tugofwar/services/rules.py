from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tugofwar.core.config import Settings
from tugofwar.models.game import WINNER_LABELS, Team


@dataclass(frozen=True)
class GameRules:
    alphabet: str = "DFKJ"
    queue_size: int = 4
    history_size: int = 2
    max_hearts: int = 3
    win_score: int = 100

    # seconds
    short_lockout_s: float = 1.0
    long_lockout_s: float = 2.5
    bump_s: float = 0.1
    wrong_key_s: float = 0.2

    def __post_init__(self) -> None:
        if not self.alphabet or len(set(self.alphabet)) != len(self.alphabet):
            raise ValueError("alphabet must be non-empty and without repeats")
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if self.max_hearts < 1:
            raise ValueError("max_hearts must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "GameRules":
        return cls(
            alphabet=settings.key_alphabet.upper(),
            queue_size=settings.key_queue_size,
            history_size=settings.key_history_size,
            max_hearts=settings.max_hearts,
            win_score=settings.win_score,
            short_lockout_s=settings.short_lockout_ms / 1000,
            long_lockout_s=settings.long_lockout_ms / 1000,
            bump_s=settings.bump_ms / 1000,
            wrong_key_s=settings.wrong_key_ms / 1000,
        )


def pull_sign(team: Team) -> int:
    """Direction a successful pull moves the score."""
    return 1 if team == "right" else -1


def winner_for(score: int, threshold: int = 100) -> Optional[Team]:
    if score <= -threshold:
        return "left"
    if score >= threshold:
        return "right"
    return None


def winner_label(team: Optional[Team]) -> Optional[str]:
    if team is None:
        return None
    return f"{WINNER_LABELS[team]} wins"
