from __future__ import annotations

import os

from fastapi import APIRouter, Request
from fastapi.responses import Response

from services.metrics import render_prometheus
from settings import settings

router = APIRouter(tags=["health"])


def _check_db(store) -> tuple[bool, str | None]:
    from app.purchases.repository import PostgresPurchaseStore

    if not isinstance(store, PostgresPurchaseStore):
        return True, None
    try:
        from db import get_conn

        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": settings.ENV,
        "store": settings.PURCHASE_STORE,
        "collaborator_mode": settings.COLLABORATOR_MODE,
        "git_sha": _resolve_git_sha(),
    }


@router.get("/healthz")
def healthz(request: Request):
    db_ok, db_error = _check_db(request.app.state.purchase_store)
    worker = getattr(request.app.state, "reconcile_worker", None)
    return {
        "ok": db_ok,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
        "reconcile_running": bool(worker and worker.running),
    }


@router.get("/metrics")
def metrics():
    body = render_prometheus()
    return Response(content=body, media_type="text/plain; version=0.0.4")
