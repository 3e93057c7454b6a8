"""
SQLAlchemy ORM models (catalog, ingest pipeline, notifications)
"""
from datetime import datetime
from sqlalchemy import (
    String, Integer, Text, TIMESTAMP, Boolean, Numeric, ForeignKey, func,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from noticehub.infrastructure.db.session import Base


# ============================================================================
# Catalog (owned by the admin collaborator)
# ============================================================================


class Game(Base):
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    icon_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class Region(Base):
    """A game's regional server; its timezone drives notice date parsing."""
    __tablename__ = "regions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(8), nullable=False)  # KR, JP, GLOBAL...
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, server_default="Asia/Seoul")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("game_id", "code", name="uq_region_game_code"),
    )


class User(Base):
    """
    User (owned by the auth collaborator, read by dispatch)
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, server_default="Asia/Seoul")
    role: Mapped[str] = mapped_column(String(16), nullable=False, server_default="USER")  # USER | ADMIN
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class PushSubscription(Base):
    """Web Push subscription for a user device."""
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    auth: Mapped[str] = mapped_column(Text, nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


# ============================================================================
# Ingest pipeline
# ============================================================================


class SourceModel(Base):
    """A configured notice source (RSS feed or HTML list page)."""
    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("regions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # RSS | HTML_LIST | HTML_DETAIL | API
    base_url: Mapped[str] = mapped_column(Text, nullable=False)
    list_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    fetch_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="30")

    last_success_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    config_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_sources_enabled_interval", "enabled", "fetch_interval_minutes"),
    )


class RawNotice(Base):
    """One fetched, unparsed item. Unique per (source_id, url)."""
    __tablename__ = "raw_notices"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    content_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    parser_version: Mapped[str] = mapped_column(String(16), nullable=False, server_default="v1")
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="NEW")  # NEW | PARSED | ERROR

    __table_args__ = (
        UniqueConstraint("source_id", "url", name="uq_raw_notice_source_url"),
        Index("ix_raw_notices_source_fetched", "source_id", "fetched_at"),
        Index("ix_raw_notices_status", "status"),
    )


class EventModel(Base):
    """Canonical, deduplicated event derived from one or more raw notices."""
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("regions.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # PICKUP | UPDATE | MAINTENANCE | EVENT | CAMPAIGN
    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_at_utc: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    end_at_utc: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    canonical_event_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    confidence: Mapped[float] = mapped_column(
        Numeric(precision=3, scale=2, asdecimal=False), nullable=False, server_default="1.00"
    )
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, server_default="PUBLIC")  # PUBLIC | NEED_REVIEW | HIDDEN

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_events_region_start", "region_id", "start_at_utc"),
        Index("ix_events_region_end", "region_id", "end_at_utc"),
        Index("ix_events_visibility", "visibility"),
    )


class EventRawLink(Base):
    """Provenance: which raw notice produced/updated which event (append-only)."""
    __tablename__ = "event_raw_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    raw_notice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("raw_notices.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("event_id", "raw_notice_id", name="uq_event_raw_link"),
    )


class IngestRun(Base):
    """Observability log: one row per source fetch / reparse run."""
    __tablename__ = "ingest_runs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sources.id", ondelete="SET NULL"), nullable=True
    )
    mode: Mapped[str] = mapped_column(String(16), nullable=False)  # MANUAL | SCHEDULED | REPARSE
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # SUCCESS | PARTIAL | FAILED
    fetched_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    parsed_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    log_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_ingest_runs_started_at", "started_at"),
    )


# ============================================================================
# Notifications
# ============================================================================


class UserGameSubscription(Base):
    """Audience for region-scoped fan-out."""
    __tablename__ = "user_games"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    region_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("regions.id", ondelete="CASCADE"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "region_id", name="uq_user_game_region"),
        Index("ix_user_games_region_enabled", "region_id", "enabled"),
    )


class NotificationRule(Base):
    """Declarative per-user rule: which event types to notify about, when and where."""
    __tablename__ = "notification_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)  # GLOBAL | REGION
    region_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("regions.id", ondelete="CASCADE"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    trigger: Mapped[str] = mapped_column(String(16), nullable=False)  # ON_START | ON_END | BEFORE_END | BEFORE_START | ON_PUBLISH
    offset_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channel: Mapped[str] = mapped_column(String(16), nullable=False)  # WEBPUSH | EMAIL | DISCORD
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_notification_rules_user_enabled", "user_id", "enabled"),
    )


class NotificationSchedule(Base):
    """Planned intent to deliver one notification to one user via one channel."""
    __tablename__ = "notification_schedules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(16), nullable=False)
    trigger_offset_minutes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    scheduled_at_utc: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="PENDING")  # PENDING | PROCESSING | SENT | FAILED | CANCELED
    payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")
    dedupe_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    claim_token: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_notification_schedules_status_time", "status", "scheduled_at_utc"),
    )


class NotificationDelivery(Base):
    """Append-only log: one row per dispatch attempt."""
    __tablename__ = "notification_deliveries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("notification_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sent_at_utc: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    result: Mapped[str] = mapped_column(String(16), nullable=False)  # SUCCESS | FAILED
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
