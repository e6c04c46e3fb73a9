
# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.purchases.effects import EffectDispatcher
from app.purchases.factory import build_dispatcher, build_store
from app.purchases.store import PurchaseStore
from app.workers.reconcile_worker import ReconcileWorker
from middleware import RequestContextMiddleware
from routes.admin_disputes import router as admin_disputes_router
from routes.admin_reconcile import router as admin_reconcile_router
from routes.health import router as health_router
from routes.purchases import router as purchases_router
from routes.webhooks import router as webhooks_router
from settings import settings, validate_env_settings

logger = logging.getLogger("vibing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    *,
    store: Optional[PurchaseStore] = None,
    dispatcher: Optional[EffectDispatcher] = None,
    clock: Callable[[], datetime] = _utcnow,
    start_worker: Optional[bool] = None,
) -> FastAPI:
    run_worker = settings.RECONCILE_ENABLED if start_worker is None else start_worker

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        validate_env_settings()
        worker = None
        if run_worker:
            worker = ReconcileWorker(
                app.state.purchase_store,
                app.state.effect_dispatcher,
                interval_seconds=settings.RECONCILE_INTERVAL_SECONDS,
                batch_size=settings.RECONCILE_BATCH_SIZE,
                clock=app.state.clock,
            )
            app.state.reconcile_worker = worker
            worker.start()
        try:
            yield
        finally:
            if worker is not None:
                # lets an in-flight sweep finish
                worker.stop()
            app.state.effect_dispatcher.shutdown(wait=True)
            if settings.PURCHASE_STORE == "postgres" and store is None:
                from db import close_pool
                close_pool()

    app = FastAPI(title="Vibing Purchases API", version="1.0.0", lifespan=lifespan)

    app.state.purchase_store = store if store is not None else build_store()
    app.state.effect_dispatcher = dispatcher if dispatcher is not None else build_dispatcher()
    app.state.clock = clock
    app.state.reconcile_worker = None

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(purchases_router)
    app.include_router(admin_disputes_router)
    app.include_router(admin_reconcile_router)
    app.include_router(webhooks_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
