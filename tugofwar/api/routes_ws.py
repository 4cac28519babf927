from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from tugofwar.api.deps import get_rules_ws, get_store_ws
from tugofwar.models.events import ClientEvent, JoinData, KeyData, SelectTeamData, ServerEvent
from tugofwar.models.game import GameView
from tugofwar.services.rules import GameRules
from tugofwar.services.session import GameSession, SessionError
from tugofwar.state.store import Store

log = logging.getLogger("ws")

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    store: Store = Depends(get_store_ws),
    rules: GameRules = Depends(get_rules_ws),
):
    await websocket.accept()

    async def push_view(view: GameView) -> None:
        await websocket.send_json(ServerEvent(type="view", data=view.model_dump()).model_dump())

    async def push_error(message: str) -> None:
        await websocket.send_json(ServerEvent(type="error", data={"message": message}).model_dump())

    session = GameSession(store, rules, on_view=push_view)
    await session.start()
    log.info("ws_connected", extra={"connection": session.connection.id})

    try:
        while True:
            raw = await websocket.receive_json()
            try:
                event = ClientEvent.model_validate(raw)

                if event.type == "join":
                    await session.join(JoinData.model_validate(event.data).nickname)
                elif event.type == "select_team":
                    await session.select_team(SelectTeamData.model_validate(event.data).team)
                elif event.type == "leave":
                    await session.leave()
                elif event.type == "key":
                    await session.press(KeyData.model_validate(event.data).key)
                elif event.type == "reset":
                    await session.reset_game()

            except ValidationError as e:
                log.debug("ws_invalid_msg", extra={"payload": raw})
                await push_error(f"invalid message: {e.error_count()} error(s)")
            except SessionError as e:
                await push_error(str(e))

    except WebSocketDisconnect as e:
        log.debug("ws_client_closed", extra={"code": e.code})
    except Exception as e:
        log.warning("ws_connection_closed", extra={"error": str(e)})
    finally:
        await session.close()
        log.info("ws_disconnected", extra={"connection": session.connection.id})
