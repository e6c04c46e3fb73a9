"""add purchase transition audit and reconcile reports

Revision ID: 0002_transitions_reports
Revises: 0001_create_purchases
Create Date: 2026-10-01 00:30:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_transitions_reports"
down_revision = "0001_create_purchases"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.purchase_transitions (
            id bigserial PRIMARY KEY,
            purchase_id uuid NOT NULL REFERENCES app.purchases(id),
            actor text NOT NULL,
            event text NOT NULL,
            from_status varchar(20) NOT NULL,
            to_status varchar(20) NOT NULL,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS purchase_transitions_purchase_idx ON app.purchase_transitions (purchase_id, created_at);"
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.reconcile_reports (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          run_at timestamptz NOT NULL DEFAULT now(),
          summary jsonb NOT NULL,
          items jsonb NOT NULL
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.reconcile_reports;")
    op.execute("DROP TABLE IF EXISTS app.purchase_transitions;")
