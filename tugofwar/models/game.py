from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints, TypeAdapter

Nickname = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=32)]

Team = Literal["left", "right"]
LockKind = Literal["short", "long"]
Phase = Literal["no_team", "idle", "locked"]

TEAMS: tuple[Team, ...] = ("left", "right")

WINNER_LABELS: Dict[Team, str] = {
    "left": "Team 1",
    "right": "Team 2",
}


class Player(BaseModel):
    nickname: Nickname
    team: Team


_nickname_adapter = TypeAdapter(Nickname)


def validate_nickname(value: str) -> str:
    """Stripped nickname, or ValidationError under the same rules as `Player`."""
    return _nickname_adapter.validate_python(value)


class GameView(BaseModel):
    """Everything one client needs to draw its screen."""

    score: int
    winner: Optional[Team] = None
    winnerLabel: Optional[str] = None
    winScore: int

    nickname: Optional[str] = None
    playerId: Optional[str] = None
    team: Optional[Team] = None
    phase: Phase = "no_team"

    # input
    queue: List[str] = Field(default_factory=list)
    history: List[str] = Field(default_factory=list)
    hearts: int
    maxHearts: int
    locked: bool = False
    lockKind: Optional[LockKind] = None
    bump: bool = False
    wrongKey: bool = False

    players: Dict[str, Player] = Field(default_factory=dict)


class GameStatus(BaseModel):
    score: int
    winner: Optional[Team] = None
    players: Dict[str, Player] = Field(default_factory=dict)
