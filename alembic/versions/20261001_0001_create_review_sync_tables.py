"""Create review sync, job queue and alert tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    alembic_op.create_table(
        "connections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        _timestamp("expires_at"),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("token_type", sa.String(length=64), nullable=True),
        _timestamp("last_synced_at"),
        _timestamp("updated_at", nullable=False),
        sa.UniqueConstraint("account_id", "provider", name="uq_connections_account_provider"),
    )
    alembic_op.create_index("ix_connections_account_id", "connections", ["account_id"])

    alembic_op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("account_resource_name", sa.String(length=255), nullable=False),
        sa.Column("location_resource_name", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=True),
        _timestamp("last_synced_at"),
        _timestamp("created_at", nullable=False),
        sa.UniqueConstraint(
            "account_id", "location_resource_name", name="uq_locations_account_resource"
        ),
    )
    alembic_op.create_index("ix_locations_account_id", "locations", ["account_id"])

    alembic_op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("location_name", sa.String(length=512), nullable=True),
        sa.Column("review_name", sa.String(length=512), nullable=False),
        sa.Column("review_id", sa.String(length=255), nullable=True),
        sa.Column("author_name", sa.String(length=255), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        _timestamp("create_time"),
        _timestamp("update_time"),
        sa.Column("reply_text", sa.Text(), nullable=True),
        _timestamp("replied_at"),
        sa.Column("owner_reply", sa.Text(), nullable=True),
        _timestamp("owner_reply_time"),
        _timestamp("last_synced_at"),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.UniqueConstraint("account_id", "review_name", name="uq_reviews_account_name"),
    )
    alembic_op.create_index("ix_reviews_account_id", "reviews", ["account_id"])
    alembic_op.create_index("ix_reviews_location_id", "reviews", ["location_id"])
    alembic_op.create_index("ix_reviews_create_time", "reviews", ["create_time"])

    alembic_op.create_table(
        "sync_runs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("run_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        _timestamp("started_at", nullable=False),
        _timestamp("finished_at"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
    )
    alembic_op.create_index("ix_sync_runs_account_id", "sync_runs", ["account_id"])
    alembic_op.create_index("ix_sync_runs_status", "sync_runs", ["status"])

    alembic_op.create_table(
        "import_status",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("aborted", sa.Boolean(), nullable=False),
        sa.Column("cursor", sa.Text(), nullable=True),
        sa.Column("pages_exhausted", sa.Boolean(), nullable=False),
        sa.Column("stats", sa.JSON(), nullable=True),
        sa.Column("errors_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("updated_at", nullable=False),
        sa.UniqueConstraint("account_id", "location_id", name="uq_import_status_account_location"),
    )

    alembic_op.create_table(
        "state_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        _timestamp("updated_at", nullable=False),
        sa.UniqueConstraint("account_id", "key", name="uq_state_entries_account_key"),
    )

    alembic_op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("run_at", nullable=False),
        _timestamp("started_at"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
    )
    alembic_op.create_index("ix_jobs_account_id", "jobs", ["account_id"])
    alembic_op.create_index("ix_jobs_status", "jobs", ["status"])
    alembic_op.create_index("ix_jobs_run_at", "jobs", ["run_at"])

    alembic_op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("review_name", sa.String(length=512), nullable=False),
        sa.Column("review_id", sa.String(length=255), nullable=True),
        sa.Column("rule_code", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        _timestamp("triggered_at", nullable=False),
        _timestamp("resolved_at"),
        _timestamp("last_notified_at"),
        sa.UniqueConstraint("rule_code", "review_name", name="uq_alerts_rule_review"),
    )
    alembic_op.create_index("ix_alerts_account_id", "alerts", ["account_id"])
    alembic_op.create_index("ix_alerts_location_id", "alerts", ["location_id"])

    alembic_op.create_table(
        "account_profiles",
        sa.Column("account_id", sa.String(length=255), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
    )


def downgrade() -> None:
    alembic_op.drop_table("account_profiles")
    alembic_op.drop_index("ix_alerts_location_id", table_name="alerts")
    alembic_op.drop_index("ix_alerts_account_id", table_name="alerts")
    alembic_op.drop_table("alerts")
    alembic_op.drop_index("ix_jobs_run_at", table_name="jobs")
    alembic_op.drop_index("ix_jobs_status", table_name="jobs")
    alembic_op.drop_index("ix_jobs_account_id", table_name="jobs")
    alembic_op.drop_table("jobs")
    alembic_op.drop_table("state_entries")
    alembic_op.drop_table("import_status")
    alembic_op.drop_index("ix_sync_runs_status", table_name="sync_runs")
    alembic_op.drop_index("ix_sync_runs_account_id", table_name="sync_runs")
    alembic_op.drop_table("sync_runs")
    alembic_op.drop_index("ix_reviews_create_time", table_name="reviews")
    alembic_op.drop_index("ix_reviews_location_id", table_name="reviews")
    alembic_op.drop_index("ix_reviews_account_id", table_name="reviews")
    alembic_op.drop_table("reviews")
    alembic_op.drop_index("ix_locations_account_id", table_name="locations")
    alembic_op.drop_table("locations")
    alembic_op.drop_index("ix_connections_account_id", table_name="connections")
    alembic_op.drop_table("connections")
