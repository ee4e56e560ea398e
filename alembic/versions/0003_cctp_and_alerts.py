"""cctp transfers and admin alerts

Revision ID: 0003_cctp_and_alerts
Revises: 0002_fee_retry_and_webhook_log
Create Date: 2026-10-17 00:20:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0003_cctp_and_alerts"
down_revision = "0002_fee_retry_and_webhook_log"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.cctp_transfers (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            reference text NOT NULL UNIQUE,
            user_id uuid NOT NULL,
            source_wallet_id uuid NOT NULL REFERENCES app.wallets (id),
            source_chain text NOT NULL,
            destination_chain text NOT NULL,
            destination_address text NOT NULL,
            amount numeric(20, 6) NOT NULL CHECK (amount > 0),
            transfer_type text NOT NULL DEFAULT 'STANDARD' CHECK (transfer_type IN ('STANDARD', 'FAST')),
            state text NOT NULL CHECK (state IN (
                'INITIATED', 'BURN_PENDING', 'BURN_CONFIRMED', 'ATTESTATION_RECEIVED',
                'COMPLETED', 'FAILED', 'CANCELLED'
            )),
            burn_tx_id text UNIQUE,
            burn_tx_hash text,
            attestation_hash text,
            message text,
            attestation text,
            mint_tx_id text UNIQUE,
            mint_tx_hash text,
            error_reason text,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL,
            burn_confirmed_at timestamp with time zone,
            attestation_received_at timestamp with time zone,
            completed_at timestamp with time zone,
            cancelled_at timestamp with time zone,
            failed_at timestamp with time zone,
            CONSTRAINT ck_cctp_chains_differ CHECK (source_chain <> destination_chain),
            CONSTRAINT ck_cctp_completed_has_mint_hash
                CHECK (state <> 'COMPLETED' OR mint_tx_hash IS NOT NULL)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_cctp_transfers_user_created ON app.cctp_transfers (user_id, created_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_cctp_transfers_burn_confirmed ON app.cctp_transfers (burn_confirmed_at) WHERE state = 'BURN_CONFIRMED';"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.alerts (
            id bigserial PRIMARY KEY,
            kind text NOT NULL,
            payload jsonb NOT NULL,
            acknowledged_at timestamp with time zone,
            created_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.alerts;")
    op.execute("DROP TABLE IF EXISTS app.cctp_transfers;")
