"""create purchases table

Revision ID: 0001_create_purchases
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_create_purchases"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.purchases (
          id uuid PRIMARY KEY,
          order_id text NOT NULL UNIQUE,
          buyer_id uuid NOT NULL,
          product_id uuid NOT NULL,
          price_cents bigint NOT NULL CHECK (price_cents > 0),
          status varchar(20) NOT NULL DEFAULT 'pending'
            CHECK (status IN (
              'pending', 'failed', 'cancelled', 'completed',
              'dispute_requested', 'dispute_processing', 'confirmed', 'refunded'
            )),
          product_file_ref text,
          auto_confirm_at timestamptz,
          dispute_reason text,
          dispute_requested_at timestamptz,
          platform_intervention_at timestamptz,
          dispute_resolved_at timestamptz,
          dispute_notes text,
          download_count integer NOT NULL DEFAULT 0,
          max_downloads integer NOT NULL DEFAULT 5,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now(),
          CONSTRAINT purchases_no_auto_confirm_during_dispute
            CHECK (NOT (auto_confirm_at IS NOT NULL AND dispute_requested_at IS NOT NULL)),
          CONSTRAINT purchases_intervention_after_window
            CHECK (
              platform_intervention_at IS NULL
              OR (dispute_requested_at IS NOT NULL
                  AND platform_intervention_at >= dispute_requested_at + interval '3 days')
            )
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS purchases_due_auto_confirm_idx
          ON app.purchases (auto_confirm_at)
          WHERE status = 'completed';
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS purchases_due_intervention_idx
          ON app.purchases (platform_intervention_at)
          WHERE status = 'dispute_requested';
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS purchases_buyer_idx ON app.purchases (buyer_id, created_at DESC);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.purchases;")
