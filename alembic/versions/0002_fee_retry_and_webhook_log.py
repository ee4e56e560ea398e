"""fee retry queue and webhook event log

Revision ID: 0002_fee_retry_and_webhook_log
Revises: 0001_transfers_schema
Create Date: 2026-10-17 00:10:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_fee_retry_and_webhook_log"
down_revision = "0001_transfers_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.fee_retry_queue (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            transfer_id uuid NOT NULL REFERENCES app.transfers (id),
            reference text NOT NULL,
            amount numeric(20, 6) NOT NULL CHECK (amount > 0),
            destination_address text NOT NULL,
            wallet_id text NOT NULL,
            blockchain text NOT NULL,
            token_address text,
            retry_count integer NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
            status text NOT NULL DEFAULT 'PENDING' CHECK (status IN ('PENDING', 'FAILED')),
            last_error text,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_fee_retry_queue_pending ON app.fee_retry_queue (created_at) WHERE status = 'PENDING';"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.webhook_event_log (
            id bigserial PRIMARY KEY,
            notification_id text,
            event_type text,
            provider_tx_id text,
            payload jsonb,
            body_raw text,
            signature_valid boolean NOT NULL DEFAULT false,
            signature_error text,
            request_id text,
            processed boolean NOT NULL DEFAULT false,
            outcome text,
            error text,
            retry_count integer NOT NULL DEFAULT 0,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            processed_at timestamp with time zone
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_event_log_notification ON app.webhook_event_log (notification_id) WHERE processed;"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_event_log_created ON app.webhook_event_log (created_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.webhook_event_log;")
    op.execute("DROP TABLE IF EXISTS app.fee_retry_queue;")
