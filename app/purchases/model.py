

from __future__ import annotations
from dataclasses import dataclass, asdict, fields
from typing import Optional, Any
from uuid import UUID, uuid4
from datetime import datetime, timezone
import secrets


@dataclass(frozen=True)
class Purchase:
    id: UUID
    order_id: str
    buyer_id: UUID
    product_id: UUID
    price_cents: int
    status: str
    product_file_ref: Optional[str] = None
    auto_confirm_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    dispute_requested_at: Optional[datetime] = None
    platform_intervention_at: Optional[datetime] = None
    dispute_resolved_at: Optional[datetime] = None
    dispute_notes: Optional[str] = None
    download_count: int = 0
    max_downloads: int = 5
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Purchase":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def generate_order_id(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def new_purchase(
    *,
    buyer_id: UUID,
    product_id: UUID,
    price_cents: int,
    product_file_ref: Optional[str] = None,
    now: datetime | None = None,
) -> Purchase:
    if price_cents <= 0:
        raise ValueError("price_cents must be positive")
    now = now or datetime.now(timezone.utc)
    return Purchase(
        id=uuid4(),
        order_id=generate_order_id(now),
        buyer_id=buyer_id,
        product_id=product_id,
        price_cents=price_cents,
        status="pending",
        product_file_ref=product_file_ref,
        created_at=now,
        updated_at=now,
    )
