
# schemas.py
from __future__ import annotations

from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional, List

from app.purchases import state_machine as sm
from app.purchases.model import Purchase


# -------- PURCHASES --------
class CreatePurchaseRequest(BaseModel):
    product_id: UUID
    price_cents: int = Field(gt=0)
    product_file_ref: Optional[str] = Field(default=None, max_length=1024)


class DisputeRequest(BaseModel):
    reason: str = Field(min_length=sm.DISPUTE_REASON_MIN, max_length=sm.DISPUTE_REASON_MAX)


class ResolveDisputeRequest(BaseModel):
    resolution: str = Field(min_length=sm.RESOLUTION_MIN, max_length=sm.RESOLUTION_MAX)
    refund: bool = False


class PurchaseOut(BaseModel):
    id: UUID
    order_id: str
    buyer_id: UUID
    product_id: UUID
    price_cents: int
    status: str
    display_status: str
    auto_confirm_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    dispute_requested_at: Optional[datetime] = None
    platform_intervention_at: Optional[datetime] = None
    dispute_resolved_at: Optional[datetime] = None
    dispute_notes: Optional[str] = None
    download_count: int = 0
    max_downloads: int = 0
    can_request_dispute: bool = False
    can_download: bool = False
    days_until_auto_confirm: Optional[int] = None
    should_intervene: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class PurchaseListResponse(BaseModel):
    purchases: List[PurchaseOut]
    count: int
    pagination: Optional[Pagination] = None


class PurchaseStats(BaseModel):
    total_purchases: int
    completed_purchases: int
    total_spent_cents: int


class TransitionResponse(BaseModel):
    purchase: PurchaseOut
    previous_status: str
    event: str
    refunded: bool = False


# -------- WEBHOOKS --------
class PaymentSignal(BaseModel):
    purchase_id: UUID
    succeeded: bool
    cancelled: bool = False


def purchase_out(p: Purchase, now: datetime) -> PurchaseOut:
    return PurchaseOut(
        id=p.id,
        order_id=p.order_id,
        buyer_id=p.buyer_id,
        product_id=p.product_id,
        price_cents=p.price_cents,
        status=p.status,
        display_status=sm.display_status(p),
        auto_confirm_at=p.auto_confirm_at,
        dispute_reason=p.dispute_reason,
        dispute_requested_at=p.dispute_requested_at,
        platform_intervention_at=p.platform_intervention_at,
        dispute_resolved_at=p.dispute_resolved_at,
        dispute_notes=p.dispute_notes,
        download_count=p.download_count,
        max_downloads=p.max_downloads,
        can_request_dispute=sm.can_request_dispute(p, now),
        can_download=sm.can_download(p),
        days_until_auto_confirm=sm.days_until_auto_confirm(p, now),
        should_intervene=sm.should_platform_intervene(p, now),
        created_at=p.created_at,
        updated_at=p.updated_at,
    )


def purchase_list(rows: List[Purchase], now: datetime) -> PurchaseListResponse:
    items = [purchase_out(p, now) for p in rows]
    return PurchaseListResponse(purchases=items, count=len(items))


def page_window(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    """Clamp page/limit; returns (page, limit, offset)."""
    page = max(1, page)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit


def purchase_page(rows: List[Purchase], now: datetime, *, page: int, limit: int, total: int) -> PurchaseListResponse:
    items = [purchase_out(p, now) for p in rows]
    return PurchaseListResponse(
        purchases=items,
        count=len(items),
        pagination=Pagination(
            current_page=page,
            total_pages=(total + limit - 1) // limit,
            total_items=total,
            items_per_page=limit,
        ),
    )
