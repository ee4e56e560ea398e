"""transfers, provider legs, wallets and fee config

Revision ID: 0001_transfers_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_transfers_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.wallets (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            user_id uuid NOT NULL,
            provider_wallet_id text NOT NULL UNIQUE,
            blockchain text NOT NULL,
            address text NOT NULL,
            created_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_wallets_user ON app.wallets (user_id);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.transfers (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            reference text NOT NULL UNIQUE,
            user_id uuid NOT NULL,
            wallet_id uuid NOT NULL REFERENCES app.wallets (id),
            provider_wallet_id text NOT NULL,
            provider_tx_id text NOT NULL UNIQUE,
            destination_address text NOT NULL,
            amount numeric(20, 6) NOT NULL CHECK (amount > 0),
            blockchain text NOT NULL,
            token_address text,
            fee_level text NOT NULL DEFAULT 'MEDIUM',
            state text NOT NULL CHECK (state IN (
                'INITIATED', 'QUEUED', 'SENT', 'CONFIRMED', 'COMPLETE',
                'FAILED', 'CANCELLED', 'DENIED', 'STUCK', 'CLEARED'
            )),
            fee numeric(20, 6) NOT NULL DEFAULT 0,
            fee_collected boolean NOT NULL DEFAULT false,
            fee_transfer_id text,
            tx_hash text,
            block_height bigint,
            block_hash text,
            network_fee text,
            error_reason text,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL,
            completed_at timestamp with time zone,
            cancelled_at timestamp with time zone,
            CONSTRAINT ck_transfers_fee_collected_has_id
                CHECK (NOT fee_collected OR fee_transfer_id IS NOT NULL)
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_transfers_user_created ON app.transfers (user_id, created_at DESC);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.provider_legs (
            provider_tx_id text PRIMARY KEY,
            kind text NOT NULL CHECK (kind IN ('TRANSFER', 'FEE', 'CCTP_BURN', 'CCTP_MINT')),
            record_id uuid NOT NULL,
            created_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.system_config (
            key text PRIMARY KEY,
            value jsonb NOT NULL,
            updated_by text,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.system_config;")
    op.execute("DROP TABLE IF EXISTS app.provider_legs;")
    op.execute("DROP TABLE IF EXISTS app.transfers;")
    op.execute("DROP TABLE IF EXISTS app.wallets;")
