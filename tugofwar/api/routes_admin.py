# tugofwar/api/routes_admin.py
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tugofwar.api.deps import get_store
from tugofwar.models.events import UpdateGameScoreData
from tugofwar.services.score_sync import increment_score
from tugofwar.state.keys import SCORE_PATH
from tugofwar.state.store import Store, StoreError

log = logging.getLogger("api.admin")

router = APIRouter(tags=["admin"])


class RpcError(Exception):
    """Error in the callable-function wire format: {"error": {"status", "message"}}."""

    def __init__(self, status: str, message: str, http_status: int) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.http_status = http_status


async def rpc_error_handler(request: Request, exc: RpcError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": {"status": exc.status, "message": exc.message}},
    )


# =====================================================
# RESET SCORE (POST only)
# =====================================================

@router.api_route(
    "/resetGameScore",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
)
async def reset_game_score(request: Request, store: Store = Depends(get_store)):
    if request.method != "POST":
        log.warning("reset_wrong_method", extra={"method": request.method})
        return JSONResponse(
            status_code=405,
            headers={"Allow": "POST"},
            content={
                "status": "error",
                "message": "Method Not Allowed. Only POST requests are accepted for this endpoint.",
            },
        )

    try:
        await store.set(SCORE_PATH, 0)
    except StoreError as exc:
        log.exception("reset_failed")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Failed to reset game score.", "details": str(exc)},
        )

    log.info("score_reset_by_admin")
    return {"status": "success", "message": "Game score reset to 0."}


# =====================================================
# UPDATE SCORE (callable RPC)
# =====================================================

@router.post("/updateGameScore")
async def update_game_score(
    payload: Any = Body(None),
    store: Store = Depends(get_store),
):
    data = payload.get("data") if isinstance(payload, dict) else None
    try:
        request = UpdateGameScoreData.model_validate(data)
    except ValidationError:
        raise RpcError(
            "INVALID_ARGUMENT",
            'The function must be called with a "type" argument ("increment" or "decrement").',
            400,
        )

    delta = 1 if request.type == "increment" else -1

    try:
        result = await increment_score(store, delta)
    except StoreError:
        log.exception("update_score_failed", extra={"delta": delta})
        raise RpcError("INTERNAL", "An error occurred while updating the game score.", 500)

    if not result.committed:
        log.warning("update_score_not_committed", extra={"delta": delta})
        raise RpcError("ABORTED", "The score update was not committed, try again.", 409)

    log.info("score_updated_by_rpc", extra={"delta": delta, "score": result.value})
    return {
        "result": {
            "status": "success",
            "message": f"Score {request.type}ed by 1. New score: {result.value}",
            "score": result.value,
        }
    }
