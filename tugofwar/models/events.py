from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

from tugofwar.models.game import Team

ClientEventType = Literal[
    "join",
    "select_team",
    "leave",
    "key",
    "reset",
]

ServerEventType = Literal[
    "view",
    "error",
]


class ClientEvent(BaseModel):
    type: ClientEventType
    data: Dict[str, Any] = Field(default_factory=dict)


class ServerEvent(BaseModel):
    type: ServerEventType
    data: Dict[str, Any]


class JoinData(BaseModel):
    nickname: str


class SelectTeamData(BaseModel):
    team: Team


class KeyData(BaseModel):
    key: str


# =========================
# CALLABLE RPC
# =========================

ScoreChange = Literal["increment", "decrement"]


class UpdateGameScoreData(BaseModel):
    type: ScoreChange
