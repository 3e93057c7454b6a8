"""
Dispatch engine: claim due schedules and deliver them.

Claiming is the only cross-worker exclusion point. Due PENDING rows are read
with FOR UPDATE SKIP LOCKED and flipped to PROCESSING under a fresh claim
token by a conditional UPDATE (status = 'PENDING'); a worker only delivers
the rows carrying its own token. The whole claim commits or rolls back as
one unit.

Delivery happens outside the claim transaction, one commit per schedule.
Every attempt appends a notification_deliveries row and leaves the schedule
SENT or FAILED.

Usage (CLI):
    python -m noticehub.application.dispatch
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from noticehub.application.push_service import list_user_subscriptions, send_push_to_user
from noticehub.config import Settings, get_settings
from noticehub.infrastructure.db.models import NotificationDelivery, NotificationSchedule, User
from noticehub.utils.timeutils import utcnow, as_utc, isoformat_z

logger = logging.getLogger(__name__)

MAX_DISPATCH_LIMIT = 500

NO_PUSH_SUBSCRIPTION = "No push subscription for user"
PUSH_NOT_ACCEPTED = "Push was not accepted by any device"
NO_EMAIL = "User email not available"
DISCORD_NOT_CONFIGURED = "Discord webhook is not configured"

_TRIGGER_TEXT = {
    "ON_START": "Starts now",
    "ON_END": "Ends now",
    "BEFORE_START": "Starts in {offset} min",
    "BEFORE_END": "Ends in {offset} min",
    "ON_PUBLISH": "New notice",
}


@dataclass(frozen=True)
class DispatchResult:
    picked: int
    sent: int
    failed: int


@dataclass(frozen=True)
class DeliveryOutcome:
    result: str  # SUCCESS | FAILED
    error_message: str | None = None
    response_payload: dict = field(default_factory=dict)


def claim_due_schedules(db: Session, limit: int, now: datetime | None = None) -> list[NotificationSchedule]:
    """
    Atomically claim up to `limit` due PENDING schedules for this worker. Commits.

    Rows locked or already claimed by another worker are skipped, never waited on.
    Any failure rolls back the whole claim and propagates.
    """
    now = as_utc(now) or utcnow()
    token = uuid.uuid4().hex

    try:
        ids = list(db.scalars(
            select(NotificationSchedule.id)
            .where(
                NotificationSchedule.status == "PENDING",
                NotificationSchedule.scheduled_at_utc <= now,
            )
            .order_by(NotificationSchedule.scheduled_at_utc, NotificationSchedule.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ))
        if not ids:
            db.commit()
            return []

        db.execute(
            update(NotificationSchedule)
            .where(
                NotificationSchedule.id.in_(ids),
                NotificationSchedule.status == "PENDING",
            )
            .values(status="PROCESSING", claim_token=token, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )

        claimed = list(db.scalars(
            select(NotificationSchedule)
            .where(NotificationSchedule.claim_token == token)
            .order_by(NotificationSchedule.scheduled_at_utc, NotificationSchedule.id)
            .execution_options(populate_existing=True)
        ))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Schedule claim failed, rolled back")
        raise

    return claimed


def _push_message(schedule: NotificationSchedule) -> dict:
    payload = schedule.payload_json or {}
    template = _TRIGGER_TEXT.get(schedule.trigger_type, "Notice")
    return {
        "title": payload.get("eventTitle") or "NoticeHub",
        "body": template.format(offset=schedule.trigger_offset_minutes),
        "url": f"/events/{schedule.event_id}",
    }


def _deliver(db: Session, schedule: NotificationSchedule, settings: Settings, now: datetime) -> DeliveryOutcome:
    channel = schedule.channel
    simulated = {"channel": channel, "simulated": True, "sentAt": isoformat_z(now)}

    if channel == "WEBPUSH":
        if not list_user_subscriptions(db, schedule.user_id):
            return DeliveryOutcome("FAILED", NO_PUSH_SUBSCRIPTION, {"channel": channel})
        if not settings.webpush_configured:
            return DeliveryOutcome("SUCCESS", None, simulated)
        devices = send_push_to_user(db, schedule.user_id, _push_message(schedule), settings)
        if devices == 0:
            return DeliveryOutcome("FAILED", PUSH_NOT_ACCEPTED, {"channel": channel})
        return DeliveryOutcome("SUCCESS", None, {"channel": channel, "devices": devices, "sentAt": isoformat_z(now)})

    if channel == "EMAIL":
        user = db.get(User, schedule.user_id)
        if user is None or not user.email:
            return DeliveryOutcome("FAILED", NO_EMAIL, {"channel": channel})
        return DeliveryOutcome("SUCCESS", None, simulated)

    if channel == "DISCORD":
        return DeliveryOutcome("FAILED", DISCORD_NOT_CONFIGURED, {"channel": channel})

    return DeliveryOutcome("SUCCESS", None, simulated)


def _mark_schedule_result(db: Session, schedule_id: int, outcome: DeliveryOutcome, now: datetime) -> None:
    db.add(NotificationDelivery(
        schedule_id=schedule_id,
        sent_at_utc=now,
        result=outcome.result,
        error_message=outcome.error_message,
        response_payload=outcome.response_payload,
    ))
    db.execute(
        update(NotificationSchedule)
        .where(NotificationSchedule.id == schedule_id)
        .values(
            status="SENT" if outcome.result == "SUCCESS" else "FAILED",
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


def dispatch_due_notifications(
    db: Session,
    limit: int = 100,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> DispatchResult:
    """Claim due schedules and attempt delivery of each one."""
    settings = settings or get_settings()
    now = as_utc(now) or utcnow()

    claimed = claim_due_schedules(db, limit, now)
    targets = [(s.id, s) for s in claimed]

    sent = 0
    failed = 0
    for schedule_id, schedule in targets:
        try:
            outcome = _deliver(db, schedule, settings, now)
        except Exception as e:
            db.rollback()
            logger.exception("Delivery of schedule %s crashed", schedule_id)
            outcome = DeliveryOutcome("FAILED", str(e) or "Unexpected delivery error", {"channel": schedule.channel})

        try:
            _mark_schedule_result(db, schedule_id, outcome, now)
        except Exception:
            db.rollback()
            logger.exception("Could not record delivery result for schedule %s", schedule_id)
            failed += 1
            continue

        if outcome.result == "SUCCESS":
            sent += 1
        else:
            failed += 1

    if claimed:
        logger.info("Dispatch: picked=%s sent=%s failed=%s", len(claimed), sent, failed)
    return DispatchResult(picked=len(claimed), sent=sent, failed=failed)


if __name__ == "__main__":
    from noticehub.infrastructure.db.session import create_db_engine, create_session_factory

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    settings = get_settings()
    SessionLocal = create_session_factory(create_db_engine(settings))
    db = SessionLocal()
    try:
        result = dispatch_due_notifications(db, limit=settings.DISPATCH_LIMIT, settings=settings)
        logger.info("Dispatched: picked=%d sent=%d failed=%d", result.picked, result.sent, result.failed)
    finally:
        db.close()
