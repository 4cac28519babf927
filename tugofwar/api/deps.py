from __future__ import annotations

from fastapi import Request, WebSocket

from tugofwar.services.rules import GameRules
from tugofwar.state.store import Store


# =========================
# CORE STATE
# =========================

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_rules(request: Request) -> GameRules:
    return request.app.state.rules


# =========================
# WEBSOCKET
# =========================

def get_store_ws(websocket: WebSocket) -> Store:
    return websocket.app.state.store


def get_rules_ws(websocket: WebSocket) -> GameRules:
    return websocket.app.state.rules
