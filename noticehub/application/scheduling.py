"""
Scheduling engine: turn PUBLIC events + user rules into notification schedules.

Schedule lifecycle:
    PENDING -> PROCESSING (claimed by dispatch) -> SENT | FAILED
    CANCELED is terminal and only set from outside the pipeline.

Re-planning is idempotent. It first purges PENDING/FAILED/CANCELED rows for
the scope being planned, then upserts by dedupe_key. SENT and in-flight
PROCESSING rows survive a re-plan untouched in status.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, delete, or_, and_, case, func
from sqlalchemy.orm import Session

from noticehub.infrastructure.db.models import (
    EventModel, NotificationRule, NotificationSchedule, UserGameSubscription,
)
from noticehub.infrastructure.db.session import insert_for
from noticehub.utils.timeutils import utcnow, as_utc

logger = logging.getLogger(__name__)

TRIGGERS = {"ON_START", "ON_END", "BEFORE_END", "BEFORE_START", "ON_PUBLISH"}
CHANNELS = {"WEBPUSH", "EMAIL", "DISCORD"}
RULE_SCOPES = {"GLOBAL", "REGION"}
SCHEDULE_STATUSES = {"PENDING", "PROCESSING", "SENT", "FAILED", "CANCELED"}
REPLANNABLE_STATUSES = ("PENDING", "FAILED", "CANCELED")
KEPT_ON_REPLAN = ("SENT", "PROCESSING")

PAST_GRACE = timedelta(minutes=5)
REBUILD_LOOKBACK = timedelta(days=1)


@dataclass(frozen=True)
class PlanResult:
    planned: int
    skipped: int
    reason: str = "ok"


@dataclass(frozen=True)
class RebuildResult:
    planned: int
    skipped: int
    events: int


def compute_scheduled_at(
    trigger: str,
    offset_minutes: int | None,
    event: EventModel,
    now: datetime | None = None,
) -> datetime | None:
    """When a rule fires for an event, or None when the basis date is unknown."""
    start_at = as_utc(event.start_at_utc)
    end_at = as_utc(event.end_at_utc)
    offset = timedelta(minutes=offset_minutes or 0)

    if trigger == "ON_START":
        return start_at
    if trigger == "ON_END":
        return end_at
    if trigger == "BEFORE_END":
        return end_at - offset if end_at else None
    if trigger == "BEFORE_START":
        return start_at - offset if start_at else None
    if trigger == "ON_PUBLISH":
        return as_utc(event.created_at) or now or utcnow()
    return None


def make_dedupe_key(user_id: int, event_id: int, channel: str, trigger: str, offset_minutes: int) -> str:
    return f"{user_id}:{event_id}:{channel}:{trigger}:{offset_minutes}"


def _target_user_ids(db: Session, region_id: int, user_id: int | None = None) -> list[int]:
    stmt = (
        select(UserGameSubscription.user_id)
        .where(
            UserGameSubscription.region_id == region_id,
            UserGameSubscription.enabled.is_(True),
        )
        .distinct()
        .order_by(UserGameSubscription.user_id)
    )
    if user_id is not None:
        stmt = stmt.where(UserGameSubscription.user_id == user_id)
    return list(db.scalars(stmt))


def _eligible_rules(db: Session, event: EventModel, user_id: int) -> list[NotificationRule]:
    return list(db.scalars(
        select(NotificationRule)
        .where(
            NotificationRule.user_id == user_id,
            NotificationRule.enabled.is_(True),
            NotificationRule.event_type == event.type,
            or_(
                NotificationRule.scope == "GLOBAL",
                and_(NotificationRule.scope == "REGION", NotificationRule.region_id == event.region_id),
            ),
        )
        .order_by(NotificationRule.id)
    ))


def _upsert_schedule(
    db: Session,
    user_id: int,
    event: EventModel,
    rule: NotificationRule,
    scheduled_at: datetime,
) -> None:
    offset = rule.offset_minutes or 0
    payload = {
        "eventTitle": event.title,
        "eventType": event.type,
        "trigger": rule.trigger,
        "offsetMinutes": offset,
        "channel": rule.channel,
    }

    stmt = insert_for(db, NotificationSchedule).values(
        user_id=user_id,
        event_id=event.id,
        channel=rule.channel,
        trigger_type=rule.trigger,
        trigger_offset_minutes=offset,
        scheduled_at_utc=scheduled_at,
        status="PENDING",
        payload_json=payload,
        dedupe_key=make_dedupe_key(user_id, event.id, rule.channel, rule.trigger, offset),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["dedupe_key"],
        set_={
            "scheduled_at_utc": stmt.excluded.scheduled_at_utc,
            "payload_json": stmt.excluded.payload_json,
            "status": case(
                (NotificationSchedule.status.in_(KEPT_ON_REPLAN), NotificationSchedule.status),
                else_="PENDING",
            ),
            "updated_at": func.now(),
        },
    )
    db.execute(stmt)


def _plan_for_event(db: Session, event: EventModel, now: datetime, user_id: int | None = None) -> tuple[int, int]:
    if event.visibility != "PUBLIC":
        return 0, 0

    planned = 0
    skipped = 0
    for target_user_id in _target_user_ids(db, event.region_id, user_id):
        for rule in _eligible_rules(db, event, target_user_id):
            scheduled_at = compute_scheduled_at(rule.trigger, rule.offset_minutes, event, now)
            if scheduled_at is None or scheduled_at < now - PAST_GRACE:
                skipped += 1
                continue
            _upsert_schedule(db, target_user_id, event, rule, scheduled_at)
            planned += 1

    return planned, skipped


def plan_notifications_for_event(db: Session, event_id: int, now: datetime | None = None) -> PlanResult:
    """
    Re-plan every schedule for one event. Flushes, does not commit.

    Called after each event upsert and after a reviewer edits an event.
    """
    now = as_utc(now) or utcnow()
    event = db.get(EventModel, event_id, populate_existing=True)
    if event is None:
        return PlanResult(planned=0, skipped=0, reason="event_not_found")

    db.execute(
        delete(NotificationSchedule)
        .where(
            NotificationSchedule.event_id == event_id,
            NotificationSchedule.status.in_(REPLANNABLE_STATUSES),
        )
        .execution_options(synchronize_session=False)
    )

    planned, skipped = _plan_for_event(db, event, now)
    db.flush()
    logger.debug("Planned event %s: planned=%s skipped=%s", event_id, planned, skipped)
    return PlanResult(planned=planned, skipped=skipped)


def rebuild_schedules_for_user(db: Session, user_id: int, now: datetime | None = None) -> RebuildResult:
    """
    Re-plan a user's schedules across all current events in their subscribed regions.

    Called whenever the user's subscriptions or rules change. Flushes, does not commit.
    """
    now = as_utc(now) or utcnow()
    db.flush()

    db.execute(
        delete(NotificationSchedule)
        .where(
            NotificationSchedule.user_id == user_id,
            NotificationSchedule.status.in_(REPLANNABLE_STATUSES),
        )
        .execution_options(synchronize_session=False)
    )

    events = list(db.scalars(
        select(EventModel)
        .join(UserGameSubscription, UserGameSubscription.region_id == EventModel.region_id)
        .where(
            UserGameSubscription.user_id == user_id,
            UserGameSubscription.enabled.is_(True),
            EventModel.visibility == "PUBLIC",
            or_(
                EventModel.end_at_utc.is_(None),
                EventModel.end_at_utc >= now - REBUILD_LOOKBACK,
            ),
        )
        .order_by(EventModel.id)
    ))

    planned = 0
    skipped = 0
    for event in events:
        event_planned, event_skipped = _plan_for_event(db, event, now, user_id=user_id)
        planned += event_planned
        skipped += event_skipped

    db.flush()
    return RebuildResult(planned=planned, skipped=skipped, events=len(events))
