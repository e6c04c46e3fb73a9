
# app/purchases/store.py
from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional, Protocol
from uuid import UUID

from app.purchases.model import Purchase
from app.purchases.state_machine import COMPLETED, DISPUTE_REQUESTED, OPEN_DISPUTE_STATUSES, PAID_STATUSES


class PurchaseStore(Protocol):
    def create(self, purchase: Purchase) -> Purchase: ...
    def get(self, purchase_id: UUID) -> Optional[Purchase]: ...
    def compare_and_swap(self, expected_status: str, new: Purchase, *, actor: str, event: str) -> bool: ...
    def list_due_auto_confirm(self, now: datetime, limit: int) -> list[Purchase]: ...
    def list_due_escalations(self, now: datetime, limit: int) -> list[Purchase]: ...
    def list_pending_confirmations(self, now: datetime, limit: Optional[int] = None) -> list[Purchase]: ...
    def list_pending_interventions(self, limit: Optional[int] = None) -> list[Purchase]: ...
    def list_disputes(self, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]: ...
    def count_disputes(self) -> int: ...
    def list_for_buyer(self, buyer_id: UUID, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]: ...
    def count_for_buyer(self, buyer_id: UUID) -> int: ...
    def buyer_stats(self, buyer_id: UUID) -> dict[str, int]: ...
    def audit_trail(self, purchase_id: UUID) -> list[dict[str, Any]]: ...
    def save_sweep_report(self, report: dict[str, Any]) -> str: ...
    def list_sweep_reports(self, limit: int) -> list[dict[str, Any]]: ...
    def get_sweep_report(self, report_id: str) -> Optional[dict[str, Any]]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _window(rows: list[Purchase], limit: Optional[int], offset: int) -> list[Purchase]:
    if limit is None:
        return rows[offset:]
    return rows[offset:offset + limit]


class InMemoryPurchaseStore:
    """
    Process-local store with the same compare-and-swap contract as the
    Postgres store. Used for PURCHASE_STORE=memory and in tests.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[UUID, Purchase] = {}
        self._order_ids: set[str] = set()
        self._audit: list[dict[str, Any]] = []
        self._reports: list[dict[str, Any]] = []

    def create(self, purchase: Purchase) -> Purchase:
        with self._lock:
            if purchase.id in self._rows or purchase.order_id in self._order_ids:
                raise ValueError(f"Duplicate purchase {purchase.id} / {purchase.order_id}")
            now = _utcnow()
            row = replace(purchase, created_at=purchase.created_at or now, updated_at=purchase.updated_at or now)
            self._rows[row.id] = row
            self._order_ids.add(row.order_id)
            return row

    def get(self, purchase_id: UUID) -> Optional[Purchase]:
        with self._lock:
            return self._rows.get(purchase_id)

    def compare_and_swap(self, expected_status: str, new: Purchase, *, actor: str, event: str) -> bool:
        with self._lock:
            current = self._rows.get(new.id)
            if current is None or current.status != expected_status:
                return False
            self._rows[new.id] = new
            self._audit.append(
                {
                    "purchase_id": str(new.id),
                    "actor": actor,
                    "event": event,
                    "from_status": expected_status,
                    "to_status": new.status,
                    "created_at": new.updated_at or _utcnow(),
                }
            )
            return True

    def _select(self, pred, key) -> list[Purchase]:
        with self._lock:
            rows = [p for p in self._rows.values() if pred(p)]
        return sorted(rows, key=key)

    def list_due_auto_confirm(self, now: datetime, limit: int) -> list[Purchase]:
        rows = self._select(
            lambda p: p.status == COMPLETED and p.auto_confirm_at is not None and p.auto_confirm_at <= now,
            lambda p: p.auto_confirm_at,
        )
        return rows[:limit]

    def list_due_escalations(self, now: datetime, limit: int) -> list[Purchase]:
        rows = self._select(
            lambda p: p.status == DISPUTE_REQUESTED
            and p.platform_intervention_at is not None
            and p.platform_intervention_at <= now,
            lambda p: p.platform_intervention_at,
        )
        return rows[:limit]

    def list_pending_confirmations(self, now: datetime, limit: Optional[int] = None) -> list[Purchase]:
        rows = self._select(
            lambda p: p.status == COMPLETED and p.auto_confirm_at is not None and p.auto_confirm_at > now,
            lambda p: p.auto_confirm_at,
        )
        return _window(rows, limit, 0)

    def list_pending_interventions(self, limit: Optional[int] = None) -> list[Purchase]:
        rows = self._select(
            lambda p: p.status == DISPUTE_REQUESTED and p.platform_intervention_at is not None,
            lambda p: p.platform_intervention_at,
        )
        return _window(rows, limit, 0)

    def list_disputes(self, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]:
        rows = self._select(
            lambda p: p.status in OPEN_DISPUTE_STATUSES,
            lambda p: p.dispute_requested_at,
        )
        return _window(list(reversed(rows)), limit, offset)

    def count_disputes(self) -> int:
        with self._lock:
            return sum(1 for p in self._rows.values() if p.status in OPEN_DISPUTE_STATUSES)

    def list_for_buyer(self, buyer_id: UUID, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]:
        rows = self._select(lambda p: p.buyer_id == buyer_id, lambda p: p.created_at)
        return _window(list(reversed(rows)), limit, offset)

    def count_for_buyer(self, buyer_id: UUID) -> int:
        with self._lock:
            return sum(1 for p in self._rows.values() if p.buyer_id == buyer_id)

    def buyer_stats(self, buyer_id: UUID) -> dict[str, int]:
        with self._lock:
            mine = [p for p in self._rows.values() if p.buyer_id == buyer_id]
        paid = [p for p in mine if p.status in PAID_STATUSES]
        return {
            "total_purchases": len(mine),
            "completed_purchases": len(paid),
            "total_spent_cents": sum(p.price_cents for p in paid),
        }

    def audit_trail(self, purchase_id: UUID) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(a) for a in self._audit if a["purchase_id"] == str(purchase_id)]

    def save_sweep_report(self, report: dict[str, Any]) -> str:
        report_id = str(uuid.uuid4())
        with self._lock:
            self._reports.append({**report, "id": report_id})
        return report_id

    def list_sweep_reports(self, limit: int) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in reversed(self._reports[-limit:])]

    def get_sweep_report(self, report_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            for r in self._reports:
                if r["id"] == report_id:
                    return dict(r)
        return None
