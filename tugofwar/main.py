from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from tugofwar.core.config import Settings, get_settings
from tugofwar.core.logging import setup_logging

from tugofwar.services.rules import GameRules
from tugofwar.state.keys import SCORE_PATH
from tugofwar.state.memory_store import MemoryStore
from tugofwar.state.redis_store import RedisStore
from tugofwar.state.store import Store, StoreError

from tugofwar.api.routes_admin import RpcError, rpc_error_handler
from tugofwar.api.routes_admin import router as admin_router
from tugofwar.api.routes_game import router as game_router
from tugofwar.api.routes_ws import router as ws_router

log = logging.getLogger("app")


def build_store(settings: Settings) -> Store:
    if settings.store_backend == "memory":
        return MemoryStore(max_retries=settings.transaction_max_retries)
    redis = Redis.from_url(settings.redis_url, decode_responses=False)
    return RedisStore(redis, max_retries=settings.transaction_max_retries)


async def bootstrap_defaults(store: Store) -> None:
    if await store.read(SCORE_PATH) is None:
        await store.set(SCORE_PATH, 0)
        log.info("score_seeded")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    setup_logging(settings.log_level)
    log.info("app_starting", extra={"store": settings.store_backend, "env": settings.app_env})

    store = build_store(settings)
    await store.ping()

    app.state.store = store
    app.state.rules = GameRules.from_settings(settings)

    await bootstrap_defaults(store)
    log.info("store_ready")

    try:
        yield
    finally:
        try:
            await store.close()
        except Exception:
            log.exception("error_closing_store")


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    log.error("store_unavailable", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=503, content={"ok": False, "error": "store unavailable"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RpcError, rpc_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)

    app.include_router(admin_router)
    app.include_router(game_router)
    app.include_router(ws_router)

    @app.get("/health")
    def health():
        return {
            "ok": True,
            "app": settings.app_name,
            "env": settings.app_env,
        }

    return app


app = create_app()
