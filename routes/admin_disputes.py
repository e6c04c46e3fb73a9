from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from app.purchases.effects import EffectDispatcher
from app.purchases.errors import PurchaseError
from app.purchases.service import TransitionHandler, TransitionResult
from deps.admin import require_admin
from deps.auth import CurrentUser
from deps.purchases import get_dispatcher, get_handler, get_store
from schemas import (
    PurchaseListResponse,
    ResolveDisputeRequest,
    TransitionResponse,
    page_window,
    purchase_list,
    purchase_page,
    purchase_out,
)
from services.purchase_errors import raise_http_from_purchase_error


router = APIRouter(prefix="/v1/admin", tags=["admin-disputes"])


def _respond(
    result: TransitionResult,
    handler: TransitionHandler,
    dispatcher: EffectDispatcher,
    background_tasks: BackgroundTasks,
) -> TransitionResponse:
    # Effects run after the response, once the status write is durable.
    if result.effects:
        background_tasks.add_task(dispatcher.run, result.purchase, result.effects)
    return TransitionResponse(
        purchase=purchase_out(result.purchase, handler.clock()),
        previous_status=result.previous_status,
        event=result.event,
        refunded=result.purchase.status == "refunded",
    )


@router.get("/disputes", response_model=PurchaseListResponse)
def list_disputes(
    page: int = 1,
    limit: int = 10,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    store=Depends(get_store),
):
    page, limit, offset = page_window(page, limit)
    rows = store.list_disputes(limit=limit, offset=offset)
    return purchase_page(rows, handler.clock(), page=page, limit=limit, total=store.count_disputes())


@router.get("/disputes/pending-interventions", response_model=PurchaseListResponse)
def list_pending_interventions(
    limit: int = 100,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    store=Depends(get_store),
):
    limit = max(1, min(limit, 500))
    return purchase_list(store.list_pending_interventions(limit=limit), handler.clock())


@router.get("/purchases/pending-confirmations", response_model=PurchaseListResponse)
def list_pending_confirmations(
    limit: int = 100,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    store=Depends(get_store),
):
    limit = max(1, min(limit, 500))
    now = handler.clock()
    return purchase_list(store.list_pending_confirmations(now, limit=limit), now)


@router.get("/purchases/{purchase_id}/audit")
def get_purchase_audit(
    purchase_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    store=Depends(get_store),
):
    try:
        handler.load(purchase_id)
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    rows = store.audit_trail(purchase_id)
    return {"purchase_id": str(purchase_id), "transitions": rows, "count": len(rows)}


@router.put("/disputes/{purchase_id}/process", response_model=TransitionResponse)
def process_dispute(
    purchase_id: UUID,
    background_tasks: BackgroundTasks,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
):
    try:
        result = handler.begin_processing(purchase_id, admin.as_actor())
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    return _respond(result, handler, dispatcher, background_tasks)


@router.put("/disputes/{purchase_id}/resolve", response_model=TransitionResponse)
def resolve_dispute(
    purchase_id: UUID,
    body: ResolveDisputeRequest,
    background_tasks: BackgroundTasks,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
):
    try:
        result = handler.resolve(purchase_id, admin.as_actor(), body.resolution, body.refund)
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _respond(result, handler, dispatcher, background_tasks)


@router.post("/purchases/{purchase_id}/confirm", response_model=TransitionResponse)
def force_confirm(
    purchase_id: UUID,
    background_tasks: BackgroundTasks,
    admin: CurrentUser = Depends(require_admin),
    handler: TransitionHandler = Depends(get_handler),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
):
    try:
        result = handler.force_confirm(purchase_id, admin.as_actor())
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    return _respond(result, handler, dispatcher, background_tasks)
