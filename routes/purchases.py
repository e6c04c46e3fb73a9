

# routes/purchases.py
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from app.purchases.errors import PurchaseError
from app.purchases.service import TransitionHandler
from deps.auth import get_current_user, CurrentUser
from deps.purchases import get_handler, get_store
from schemas import (
    CreatePurchaseRequest,
    DisputeRequest,
    PurchaseListResponse,
    PurchaseOut,
    PurchaseStats,
    TransitionResponse,
    page_window,
    purchase_page,
    purchase_out,
)
from services.purchase_errors import raise_http_from_purchase_error

logger = logging.getLogger("vibing")
router = APIRouter(prefix="/v1/purchases", tags=["purchases"])


@router.post("", response_model=PurchaseOut, status_code=201)
def create_purchase(
    body: CreatePurchaseRequest,
    user: CurrentUser = Depends(get_current_user),
    handler: TransitionHandler = Depends(get_handler),
):
    try:
        p = handler.create_order(
            user.as_actor(),
            product_id=body.product_id,
            price_cents=body.price_cents,
            product_file_ref=body.product_file_ref,
        )
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    return purchase_out(p, handler.clock())


@router.get("", response_model=PurchaseListResponse)
def list_my_purchases(
    page: int = 1,
    limit: int = 10,
    user: CurrentUser = Depends(get_current_user),
    handler: TransitionHandler = Depends(get_handler),
    store=Depends(get_store),
):
    page, limit, offset = page_window(page, limit)
    rows = store.list_for_buyer(user.user_id, limit=limit, offset=offset)
    total = store.count_for_buyer(user.user_id)
    return purchase_page(rows, handler.clock(), page=page, limit=limit, total=total)


@router.get("/stats", response_model=PurchaseStats)
def my_purchase_stats(
    user: CurrentUser = Depends(get_current_user),
    store=Depends(get_store),
):
    return PurchaseStats(**store.buyer_stats(user.user_id))


@router.get("/{purchase_id}", response_model=PurchaseOut)
def get_purchase(
    purchase_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    handler: TransitionHandler = Depends(get_handler),
):
    try:
        p = handler.load_for(purchase_id, user.as_actor())
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    return purchase_out(p, handler.clock())


@router.post("/{purchase_id}/dispute", response_model=TransitionResponse)
def request_dispute(
    purchase_id: UUID,
    body: DisputeRequest,
    user: CurrentUser = Depends(get_current_user),
    handler: TransitionHandler = Depends(get_handler),
):
    try:
        result = handler.open_dispute(purchase_id, user.as_actor(), body.reason)
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return TransitionResponse(
        purchase=purchase_out(result.purchase, handler.clock()),
        previous_status=result.previous_status,
        event=result.event,
    )
