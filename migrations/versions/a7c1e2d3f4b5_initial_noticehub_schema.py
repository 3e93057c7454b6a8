"""initial noticehub schema: catalog, ingest pipeline, notifications

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-03-01

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "a7c1e2d3f4b5"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---- catalog ----
    op.create_table(
        "games",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("icon_url", sa.Text, nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "regions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("game_id", sa.Integer, sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(8), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Asia/Seoul"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("game_id", "code", name="uq_region_game_code"),
    )
    op.create_index("ix_regions_game_id", "regions", ["game_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Asia/Seoul"),
        sa.Column("role", sa.String(16), nullable=False, server_default="USER"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("endpoint", sa.Text, nullable=False, unique=True),
        sa.Column("p256dh", sa.Text, nullable=False),
        sa.Column("auth", sa.Text, nullable=False),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    # ---- ingest pipeline ----
    op.create_table(
        "sources",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("region_id", sa.Integer, sa.ForeignKey("regions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("base_url", sa.Text, nullable=False),
        sa.Column("list_url", sa.Text, nullable=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("fetch_interval_minutes", sa.Integer, nullable=False, server_default="30"),
        sa.Column("last_success_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error_message", sa.Text, nullable=True),
        sa.Column("config_json", JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_sources_region_id", "sources", ["region_id"])
    op.create_index("ix_sources_enabled_interval", "sources", ["enabled", "fetch_interval_minutes"])

    op.create_table(
        "raw_notices",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.Integer, sa.ForeignKey("sources.id", ondelete="CASCADE"), nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("published_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("fetched_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("content_text", sa.Text, nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("raw_payload", JSONB, nullable=True),
        sa.Column("parser_version", sa.String(16), nullable=False, server_default="v1"),
        sa.Column("status", sa.String(16), nullable=False, server_default="NEW"),
        sa.UniqueConstraint("source_id", "url", name="uq_raw_notice_source_url"),
    )
    op.create_index("ix_raw_notices_source_fetched", "raw_notices", ["source_id", "fetched_at"])
    op.create_index("ix_raw_notices_status", "raw_notices", ["status"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("region_id", sa.Integer, sa.ForeignKey("regions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("start_at_utc", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("end_at_utc", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("source_url", sa.Text, nullable=False),
        sa.Column("canonical_event_key", sa.String(255), nullable=False, unique=True),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=False, server_default="1.00"),
        sa.Column("visibility", sa.String(16), nullable=False, server_default="PUBLIC"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_events_region_start", "events", ["region_id", "start_at_utc"])
    op.create_index("ix_events_region_end", "events", ["region_id", "end_at_utc"])
    op.create_index("ix_events_visibility", "events", ["visibility"])

    op.create_table(
        "event_raw_links",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer, sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("raw_notice_id", sa.Integer, sa.ForeignKey("raw_notices.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("event_id", "raw_notice_id", name="uq_event_raw_link"),
    )

    op.create_table(
        "ingest_runs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.Integer, sa.ForeignKey("sources.id", ondelete="SET NULL"), nullable=True),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("fetched_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("parsed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("log_message", sa.Text, nullable=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_ingest_runs_started_at", "ingest_runs", ["started_at"])

    # ---- notifications ----
    op.create_table(
        "user_games",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("region_id", sa.Integer, sa.ForeignKey("regions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "region_id", name="uq_user_game_region"),
    )
    op.create_index("ix_user_games_region_enabled", "user_games", ["region_id", "enabled"])

    op.create_table(
        "notification_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("scope", sa.String(16), nullable=False),
        sa.Column("region_id", sa.Integer, sa.ForeignKey("regions.id", ondelete="CASCADE"), nullable=True),
        sa.Column("event_type", sa.String(16), nullable=False),
        sa.Column("trigger", sa.String(16), nullable=False),
        sa.Column("offset_minutes", sa.Integer, nullable=True),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_notification_rules_user_enabled", "notification_rules", ["user_id", "enabled"])

    # notification_schedules: dedupe_key keeps re-planning idempotent,
    # claim_token marks which dispatcher owns a PROCESSING row
    op.create_table(
        "notification_schedules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("event_id", sa.Integer, sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("trigger_type", sa.String(16), nullable=False),
        sa.Column("trigger_offset_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("scheduled_at_utc", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payload_json", JSONB, nullable=False, server_default="{}"),
        sa.Column("dedupe_key", sa.String(255), nullable=False, unique=True),
        sa.Column("claim_token", sa.String(32), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_notification_schedules_user_id", "notification_schedules", ["user_id"])
    op.create_index("ix_notification_schedules_event_id", "notification_schedules", ["event_id"])
    op.create_index("ix_notification_schedules_claim_token", "notification_schedules", ["claim_token"])
    op.create_index("ix_notification_schedules_status_time", "notification_schedules", ["status", "scheduled_at_utc"])

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("schedule_id", sa.Integer,
                  sa.ForeignKey("notification_schedules.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("sent_at_utc", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("result", sa.String(16), nullable=False),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("response_payload", JSONB, nullable=True),
    )
    op.create_index("ix_notification_deliveries_schedule_id", "notification_deliveries", ["schedule_id"])


def downgrade() -> None:
    op.drop_table("notification_deliveries")
    op.drop_table("notification_schedules")
    op.drop_table("notification_rules")
    op.drop_table("user_games")
    op.drop_table("ingest_runs")
    op.drop_table("event_raw_links")
    op.drop_table("events")
    op.drop_table("raw_notices")
    op.drop_table("sources")
    op.drop_table("push_subscriptions")
    op.drop_table("users")
    op.drop_table("regions")
    op.drop_table("games")
