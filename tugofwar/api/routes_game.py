from __future__ import annotations

from fastapi import APIRouter, Depends

from tugofwar.api.deps import get_rules, get_store
from tugofwar.models.game import GameStatus
from tugofwar.services.roster_sync import parse_roster
from tugofwar.services.rules import GameRules, winner_for
from tugofwar.services.score_sync import as_score
from tugofwar.state.keys import PLAYERS_PATH, SCORE_PATH
from tugofwar.state.store import Store

router = APIRouter(prefix="/game", tags=["game"])


@router.get("", response_model=GameStatus)
async def get_game(
    store: Store = Depends(get_store),
    rules: GameRules = Depends(get_rules),
):
    score = as_score(await store.read(SCORE_PATH))
    players = parse_roster(await store.read(PLAYERS_PATH))
    return GameStatus(
        score=score,
        winner=winner_for(score, rules.win_score),
        players=players,
    )
