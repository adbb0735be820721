"""0001 init

Revision ID: 0001
Revises:
Create Date: 2026-10-05
"""

from __future__ import annotations

from alembic import op


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS events (
          event_id TEXT PRIMARY KEY,
          venue_id TEXT NOT NULL,
          venue_name TEXT,
          race_date DATE NOT NULL,
          start_at TIMESTAMPTZ,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_events_race_date ON events(race_date, venue_id);

        CREATE TABLE IF NOT EXISTS entries (
          event_id TEXT NOT NULL,
          competitor_id TEXT NOT NULL,
          name TEXT,
          handler_id TEXT,
          handler_name TEXT,
          rider_name TEXT,
          number INTEGER,
          silk_url TEXT,
          current_price DOUBLE PRECISION,
          probabilities JSONB NOT NULL DEFAULT '{}'::jsonb,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          PRIMARY KEY (event_id, competitor_id)
        );

        CREATE TABLE IF NOT EXISTS price_state (
          event_id TEXT NOT NULL,
          competitor_id TEXT NOT NULL,
          source_id TEXT NOT NULL,
          initial_price DOUBLE PRECISION NOT NULL CHECK (initial_price > 0),
          previous_price DOUBLE PRECISION,
          current_price DOUBLE PRECISION NOT NULL CHECK (current_price > 0),
          change_count INTEGER NOT NULL DEFAULT 0,
          last_change_at TIMESTAMPTZ,
          movement TEXT NOT NULL DEFAULT 'stable'
            CHECK (movement IN ('shortening', 'lengthening', 'stable')),
          movement_pct DOUBLE PRECISION,
          is_active BOOLEAN NOT NULL DEFAULT true,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          PRIMARY KEY (event_id, competitor_id, source_id)
        );
        CREATE INDEX IF NOT EXISTS idx_price_state_movers
          ON price_state(movement_pct) WHERE is_active AND movement = 'shortening';

        CREATE TABLE IF NOT EXISTS price_change_events (
          id BIGSERIAL PRIMARY KEY,
          event_id TEXT NOT NULL,
          competitor_id TEXT NOT NULL,
          source_id TEXT NOT NULL,
          from_price DOUBLE PRECISION NOT NULL,
          to_price DOUBLE PRECISION NOT NULL,
          change_abs DOUBLE PRECISION NOT NULL,
          change_pct DOUBLE PRECISION NOT NULL,
          direction TEXT NOT NULL,
          source_ts TIMESTAMPTZ,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_price_change_events_key
          ON price_change_events(event_id, competitor_id, source_id, id);

        CREATE TABLE IF NOT EXISTS data_quality_log (
          id BIGSERIAL PRIMARY KEY,
          scope TEXT NOT NULL,
          level TEXT NOT NULL,
          message TEXT NOT NULL,
          context JSONB NOT NULL DEFAULT '{}'::jsonb,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """
    )


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS data_quality_log;
        DROP TABLE IF EXISTS price_change_events;
        DROP TABLE IF EXISTS price_state;
        DROP TABLE IF EXISTS entries;
        DROP TABLE IF EXISTS events;
        """
    )
