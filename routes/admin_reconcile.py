from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from app.workers.reconcile_worker import sweep
from deps.admin import require_admin
from deps.auth import CurrentUser
from deps.purchases import get_dispatcher, get_store
from settings import settings


router = APIRouter(prefix="/v1/admin/reconcile", tags=["admin-reconcile"])


@router.get("/reports")
def list_reconcile_reports(limit: int = 20, admin: CurrentUser = Depends(require_admin), store=Depends(get_store)):
    limit = max(1, min(limit, 200))
    rows = store.list_sweep_reports(limit)
    return {"reports": rows, "count": len(rows), "limit": limit}


@router.get("/reports/{report_id}")
def get_reconcile_report(report_id: str, admin: CurrentUser = Depends(require_admin), store=Depends(get_store)):
    row = store.get_sweep_report(report_id)
    if not row:
        raise HTTPException(status_code=404, detail="REPORT_NOT_FOUND")
    return row


@router.post("/run")
def run_reconcile_now(
    request: Request,
    admin: CurrentUser = Depends(require_admin),
    store=Depends(get_store),
    dispatcher=Depends(get_dispatcher),
):
    return sweep(
        store,
        dispatcher,
        now=request.app.state.clock(),
        batch_size=settings.RECONCILE_BATCH_SIZE,
    )


@router.get("/status")
def reconcile_status(request: Request, admin: CurrentUser = Depends(require_admin)):
    worker = getattr(request.app.state, "reconcile_worker", None)
    if worker is None:
        return {"running": False, "cycles": 0, "last_run_at": None}
    last = worker.last_report or {}
    return {
        "running": worker.running,
        "cycles": worker.cycles,
        "interval_seconds": worker.interval_seconds,
        "last_run_at": last.get("run_at"),
    }
