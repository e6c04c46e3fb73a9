


# app/purchases/repository.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import Json, RealDictCursor

from app.purchases.model import Purchase
from app.purchases.state_machine import PAID_STATUSES

_COLUMNS = """
  id,
  order_id,
  buyer_id,
  product_id,
  price_cents,
  status,
  product_file_ref,
  auto_confirm_at,
  dispute_reason,
  dispute_requested_at,
  platform_intervention_at,
  dispute_resolved_at,
  dispute_notes,
  download_count,
  max_downloads,
  created_at,
  updated_at
"""


def _adapt_json(value: Any) -> Json:
    # report items carry datetimes
    return Json(value, dumps=lambda v: json.dumps(v, default=str))


def _rows(cur) -> list[Purchase]:
    return [Purchase.from_row(dict(r)) for r in cur.fetchall()]


# ==========================================================
# Writes
# ==========================================================

def insert_purchase(conn, p: Purchase) -> Purchase:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO app.purchases (
              id, order_id, buyer_id, product_id, price_cents, status,
              product_file_ref, download_count, max_downloads,
              created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()), COALESCE(%s, now()))
            RETURNING {_COLUMNS}
            """,
            (
                p.id,
                p.order_id,
                p.buyer_id,
                p.product_id,
                p.price_cents,
                p.status,
                p.product_file_ref,
                p.download_count,
                p.max_downloads,
                p.created_at,
                p.updated_at,
            ),
        )
        return Purchase.from_row(dict(cur.fetchone()))


def update_purchase_if_status(conn, *, expected_status: str, new: Purchase) -> bool:
    """
    Compare-and-swap on status. Only lifecycle fields are written; identity,
    parties and price never change after insert.
    """
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE app.purchases
        SET
          status = %s,
          auto_confirm_at = %s,
          dispute_reason = %s,
          dispute_requested_at = %s,
          platform_intervention_at = %s,
          dispute_resolved_at = %s,
          dispute_notes = %s,
          updated_at = COALESCE(%s, now())
        WHERE id = %s
          AND status = %s
        """,
        (
            new.status,
            new.auto_confirm_at,
            new.dispute_reason,
            new.dispute_requested_at,
            new.platform_intervention_at,
            new.dispute_resolved_at,
            new.dispute_notes,
            new.updated_at,
            new.id,
            expected_status,
        ),
    )
    return cur.rowcount == 1


def insert_transition_audit(conn, *, purchase_id: UUID, actor: str, event: str, from_status: str, to_status: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.purchase_transitions (purchase_id, actor, event, from_status, to_status)
            VALUES (%s, %s, %s, %s, %s);
            """,
            (purchase_id, actor, event, from_status, to_status),
        )


def insert_sweep_report(conn, report: dict[str, Any]) -> str:
    summary = {k: v for k, v in report.items() if k not in ("items", "run_at")}
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.reconcile_reports (run_at, summary, items)
            VALUES (%s, %s::jsonb, %s::jsonb)
            RETURNING id::text
            """,
            (report.get("run_at"), _adapt_json(summary), _adapt_json(report.get("items") or [])),
        )
        return cur.fetchone()[0]


# ==========================================================
# Reads
# ==========================================================

def get_purchase(conn, purchase_id: UUID) -> Optional[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM app.purchases WHERE id = %s", (purchase_id,))
        row = cur.fetchone()
        return Purchase.from_row(dict(row)) if row else None


def list_due_auto_confirm(conn, *, now: datetime, limit: int) -> list[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.purchases
            WHERE status = 'completed'
              AND auto_confirm_at IS NOT NULL
              AND auto_confirm_at <= %s
            ORDER BY auto_confirm_at ASC
            LIMIT %s
            """,
            (now, limit),
        )
        return _rows(cur)


def list_due_escalations(conn, *, now: datetime, limit: int) -> list[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.purchases
            WHERE status = 'dispute_requested'
              AND platform_intervention_at IS NOT NULL
              AND platform_intervention_at <= %s
            ORDER BY platform_intervention_at ASC
            LIMIT %s
            """,
            (now, limit),
        )
        return _rows(cur)


# LIMIT NULL is no limit in Postgres

def list_pending_confirmations(conn, *, now: datetime, limit: Optional[int] = None) -> list[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.purchases
            WHERE status = 'completed'
              AND auto_confirm_at IS NOT NULL
              AND auto_confirm_at > %s
            ORDER BY auto_confirm_at ASC
            LIMIT %s
            """,
            (now, limit),
        )
        return _rows(cur)


def list_pending_interventions(conn, *, limit: Optional[int] = None) -> list[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.purchases
            WHERE status = 'dispute_requested'
              AND platform_intervention_at IS NOT NULL
            ORDER BY platform_intervention_at ASC
            LIMIT %s
            """,
            (limit,),
        )
        return _rows(cur)


def list_disputes(conn, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.purchases
            WHERE status IN ('dispute_requested', 'dispute_processing')
            ORDER BY dispute_requested_at DESC
            LIMIT %s OFFSET %s
            """,
            (limit, offset),
        )
        return _rows(cur)


def count_disputes(conn) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*)
            FROM app.purchases
            WHERE status IN ('dispute_requested', 'dispute_processing')
            """
        )
        return int(cur.fetchone()[0])


def list_for_buyer(conn, buyer_id: UUID, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.purchases
            WHERE buyer_id = %s
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (buyer_id, limit, offset),
        )
        return _rows(cur)


def count_for_buyer(conn, buyer_id: UUID) -> int:
    with conn.cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM app.purchases WHERE buyer_id = %s", (buyer_id,))
        return int(cur.fetchone()[0])


def buyer_stats(conn, buyer_id: UUID) -> dict[str, int]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
              COUNT(*) AS total_purchases,
              COUNT(*) FILTER (WHERE status = ANY(%s)) AS completed_purchases,
              COALESCE(SUM(price_cents) FILTER (WHERE status = ANY(%s)), 0) AS total_spent_cents
            FROM app.purchases
            WHERE buyer_id = %s
            """,
            (list(PAID_STATUSES), list(PAID_STATUSES), buyer_id),
        )
        row = cur.fetchone()
        return {k: int(v) for k, v in dict(row).items()}


def list_transition_audit(conn, purchase_id: UUID) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT purchase_id::text AS purchase_id, actor, event, from_status, to_status, created_at
            FROM app.purchase_transitions
            WHERE purchase_id = %s
            ORDER BY created_at ASC, id ASC
            """,
            (purchase_id,),
        )
        return [dict(r) for r in cur.fetchall()]


def list_sweep_reports(conn, *, limit: int) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id::text AS id, run_at, summary, items
            FROM app.reconcile_reports
            ORDER BY run_at DESC
            LIMIT %s
            """,
            (limit,),
        )
        return [_flatten_report(dict(r)) for r in cur.fetchall()]


def get_sweep_report(conn, report_id: str) -> Optional[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id::text AS id, run_at, summary, items
            FROM app.reconcile_reports
            WHERE id = %s::uuid
            """,
            (report_id,),
        )
        row = cur.fetchone()
        return _flatten_report(dict(row)) if row else None


def _flatten_report(row: dict[str, Any]) -> dict[str, Any]:
    summary = row.pop("summary", None) or {}
    return {**summary, **row}


# ==========================================================
# Store facade
# ==========================================================

class PostgresPurchaseStore:
    """
    PurchaseStore over app.purchases. Every method runs in its own
    transaction from db.get_conn().
    """

    def __init__(self, get_conn=None):
        if get_conn is None:
            from db import get_conn
        self._get_conn = get_conn

    def create(self, purchase: Purchase) -> Purchase:
        with self._get_conn() as conn:
            return insert_purchase(conn, purchase)

    def get(self, purchase_id: UUID) -> Optional[Purchase]:
        with self._get_conn() as conn:
            return get_purchase(conn, purchase_id)

    def compare_and_swap(self, expected_status: str, new: Purchase, *, actor: str, event: str) -> bool:
        with self._get_conn() as conn:
            ok = update_purchase_if_status(conn, expected_status=expected_status, new=new)
            if ok:
                insert_transition_audit(
                    conn,
                    purchase_id=new.id,
                    actor=actor,
                    event=event,
                    from_status=expected_status,
                    to_status=new.status,
                )
            return ok

    def list_due_auto_confirm(self, now: datetime, limit: int) -> list[Purchase]:
        with self._get_conn() as conn:
            return list_due_auto_confirm(conn, now=now, limit=limit)

    def list_due_escalations(self, now: datetime, limit: int) -> list[Purchase]:
        with self._get_conn() as conn:
            return list_due_escalations(conn, now=now, limit=limit)

    def list_pending_confirmations(self, now: datetime, limit: Optional[int] = None) -> list[Purchase]:
        with self._get_conn() as conn:
            return list_pending_confirmations(conn, now=now, limit=limit)

    def list_pending_interventions(self, limit: Optional[int] = None) -> list[Purchase]:
        with self._get_conn() as conn:
            return list_pending_interventions(conn, limit=limit)

    def list_disputes(self, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]:
        with self._get_conn() as conn:
            return list_disputes(conn, limit=limit, offset=offset)

    def count_disputes(self) -> int:
        with self._get_conn() as conn:
            return count_disputes(conn)

    def list_for_buyer(self, buyer_id: UUID, *, limit: Optional[int] = None, offset: int = 0) -> list[Purchase]:
        with self._get_conn() as conn:
            return list_for_buyer(conn, buyer_id, limit=limit, offset=offset)

    def count_for_buyer(self, buyer_id: UUID) -> int:
        with self._get_conn() as conn:
            return count_for_buyer(conn, buyer_id)

    def buyer_stats(self, buyer_id: UUID) -> dict[str, int]:
        with self._get_conn() as conn:
            return buyer_stats(conn, buyer_id)

    def audit_trail(self, purchase_id: UUID) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            return list_transition_audit(conn, purchase_id)

    def save_sweep_report(self, report: dict[str, Any]) -> str:
        with self._get_conn() as conn:
            return insert_sweep_report(conn, report)

    def list_sweep_reports(self, limit: int) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            return list_sweep_reports(conn, limit=limit)

    def get_sweep_report(self, report_id: str) -> Optional[dict[str, Any]]:
        try:
            UUID(str(report_id))
        except ValueError:
            return None
        with self._get_conn() as conn:
            return get_sweep_report(conn, report_id)
