#=================================================================
# odoo_sync/main_app.py
# FastAPI application entry-point.
#
#   uvicorn odoo_sync.main_app:create_app --factory
#=================================================================

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import odoo_sync.logging_filters  # noqa: F401  (installs log filters)
from odoo_sync.config import Settings, settings, validate_settings
from odoo_sync.routes import router as api_router
from odoo_sync.services import Services, build_services
from odoo_sync.webhooks.inbound import router as webhooks_router
from odoo_sync.workers.jobs_worker import worker_loop

logger = logging.getLogger("uvicorn.error")


def create_app(services: Optional[Services] = None, cfg: Optional[Settings] = None) -> FastAPI:
    cfg = cfg or (services.settings if services is not None else settings)
    services = services or build_services(cfg)

    app = FastAPI(
        title="WordPress Odoo Sync",
        description="Durable sync queue between WordPress and Odoo.",
    )
    app.state.services = services

    # --- Logging setup (console, INFO level) ---
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s | %(message)s"
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------- Include routers ----------------
    app.include_router(webhooks_router)   # /webhooks/wp, /webhooks/odoo (token)
    app.include_router(api_router)        # /api/* (HTTP Basic)

    # --- Root endpoint ---
    @app.get("/")
    async def home():
        return {"status": "running", "service": "WordPress Odoo Sync"}

    # --- Global error handler (keeps full stack trace in logs) ---
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": f"Sync failed: {str(exc)}"},
        )

    # ---- Background worker lifecycle ----
    state: dict = {"task": None, "stop": None}

    @app.on_event("startup")
    async def _startup():
        for problem in validate_settings(cfg):
            logger.warning("[CONFIG] %s", problem)
        await services.init()
        if cfg.SYNC_WORKER_ENABLED:
            state["stop"] = asyncio.Event()
            state["task"] = asyncio.create_task(worker_loop(state["stop"], services))

    @app.on_event("shutdown")
    async def _shutdown():
        if state["stop"] is not None:
            state["stop"].set()
        task = state["task"]
        if task is not None:
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except asyncio.TimeoutError:
                task.cancel()
        await services.close()

    return app
