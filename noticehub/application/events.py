"""
Event canonicalizer: raw notice -> canonical event row (+ provenance, + re-plan)
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from noticehub.application.scheduling import plan_notifications_for_event
from noticehub.config import get_settings
from noticehub.domain.notice_parser import (
    VISIBILITIES, canonical_event_key, parse_notice,
)
from noticehub.domain.source_config import parse_source_config
from noticehub.domain.text_extraction import EVENT_TYPES, normalize_text
from noticehub.infrastructure.db.models import (
    EventModel, EventRawLink, RawNotice, Region, SourceModel,
)
from noticehub.infrastructure.db.session import insert_for
from noticehub.utils.timeutils import as_utc

logger = logging.getLogger(__name__)

REVIEWABLE_FIELDS = {"type", "title", "summary", "start_at_utc", "end_at_utc", "visibility"}


class EventReviewError(ValueError):
    pass


class EventNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class EventUpsertResult:
    event_id: int
    visibility: str
    confidence: float


def source_timezone(db: Session, source: SourceModel, default: str | None = None) -> str:
    """
    Timezone used to read local dates in a source's notices.

    Source config wins, then the region, then `default` (settings.TIMEZONE when omitted).
    """
    config = parse_source_config(source.type, source.config_json)
    configured = getattr(config, "timezone", None)
    if configured:
        return configured
    region = db.get(Region, source.region_id)
    if region and region.timezone:
        return region.timezone
    return default or get_settings().TIMEZONE


def upsert_event_from_raw(
    db: Session,
    source: SourceModel,
    raw_notice: RawNotice,
    now: datetime | None = None,
    default_timezone: str | None = None,
) -> EventUpsertResult:
    """
    Parse a raw notice and merge it into the event identified by its canonical key.

    Last write wins on conflict. Links the raw notice to the event, marks it
    PARSED and re-plans the event's schedules. Flushes, does not commit.
    """
    draft = parse_notice(raw_notice.title, raw_notice.content_text, source_timezone(db, source, default_timezone))
    key = canonical_event_key(
        source.region_id, draft.type, draft.title, draft.start_at_utc, draft.end_at_utc,
    )

    stmt = insert_for(db, EventModel).values(
        region_id=source.region_id,
        type=draft.type,
        title=draft.title,
        summary=draft.summary,
        start_at_utc=draft.start_at_utc,
        end_at_utc=draft.end_at_utc,
        source_url=raw_notice.url,
        canonical_event_key=key,
        confidence=draft.confidence,
        visibility=draft.visibility,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["canonical_event_key"],
        set_={
            "type": stmt.excluded.type,
            "title": stmt.excluded.title,
            "summary": stmt.excluded.summary,
            "start_at_utc": stmt.excluded.start_at_utc,
            "end_at_utc": stmt.excluded.end_at_utc,
            "source_url": stmt.excluded.source_url,
            "confidence": stmt.excluded.confidence,
            "visibility": stmt.excluded.visibility,
            "updated_at": func.now(),
        },
    ).returning(EventModel.id)
    event_id = db.execute(stmt).scalar_one()

    link = insert_for(db, EventRawLink).values(event_id=event_id, raw_notice_id=raw_notice.id)
    db.execute(link.on_conflict_do_nothing(index_elements=["event_id", "raw_notice_id"]))

    raw_notice.status = "PARSED"
    db.flush()

    plan = plan_notifications_for_event(db, event_id, now=now)
    logger.info(
        "Raw notice %s -> event %s (%s, confidence=%.2f, %s), planned=%s",
        raw_notice.id, event_id, draft.type, draft.confidence, draft.visibility, plan.planned,
    )

    return EventUpsertResult(
        event_id=event_id, visibility=draft.visibility, confidence=draft.confidence,
    )


def review_event(db: Session, event_id: int, now: datetime | None = None, **changes) -> EventModel:
    """
    Reviewer override of an event's fields, followed by a re-plan.

    Publishing a NEED_REVIEW event (visibility=PUBLIC) is the usual case.
    Flushes, does not commit.
    """
    event = db.get(EventModel, event_id)
    if event is None:
        raise EventNotFoundError(f"Event {event_id} not found")

    unknown = set(changes) - REVIEWABLE_FIELDS
    if unknown:
        raise EventReviewError(f"Fields cannot be reviewed: {', '.join(sorted(unknown))}")
    if "type" in changes and changes["type"] not in EVENT_TYPES:
        raise EventReviewError(f"Unknown event type: {changes['type']}")
    if "visibility" in changes and changes["visibility"] not in VISIBILITIES:
        raise EventReviewError(f"Unknown visibility: {changes['visibility']}")
    if "title" in changes:
        title = normalize_text(changes["title"] or "")
        if not title:
            raise EventReviewError("Title must not be empty")
        changes["title"] = title

    for field_name in ("start_at_utc", "end_at_utc"):
        if field_name in changes:
            changes[field_name] = as_utc(changes[field_name])
    start_at = changes.get("start_at_utc", as_utc(event.start_at_utc))
    end_at = changes.get("end_at_utc", as_utc(event.end_at_utc))
    if start_at and end_at and end_at < start_at:
        raise EventReviewError("End must not be before start")

    for field_name, value in changes.items():
        setattr(event, field_name, value)
    db.flush()

    plan_notifications_for_event(db, event_id, now=now)
    return event


def list_public_events(
    db: Session,
    region_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[EventModel]:
    stmt = select(EventModel).where(EventModel.visibility == "PUBLIC")
    if region_id is not None:
        stmt = stmt.where(EventModel.region_id == region_id)
    if event_type:
        stmt = stmt.where(EventModel.type == event_type)
    stmt = stmt.order_by(EventModel.start_at_utc.desc(), EventModel.id.desc()).limit(limit)
    return list(db.scalars(stmt))
