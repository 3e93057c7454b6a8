"""
Tests for the scheduling engine: trigger times, fan-out, idempotent re-planning.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from noticehub.application.events import EventReviewError, EventNotFoundError, review_event
from noticehub.application.scheduling import (
    compute_scheduled_at,
    make_dedupe_key,
    plan_notifications_for_event,
    rebuild_schedules_for_user,
)
from noticehub.infrastructure.db.models import (
    EventModel, NotificationRule, NotificationSchedule, Region, UserGameSubscription,
)
from noticehub.utils.timeutils import as_utc

USER = 1
OTHER_USER = 2

START = datetime(2026, 3, 1, 1, 0, tzinfo=timezone.utc)
END = datetime(2026, 3, 8, 2, 30, tzinfo=timezone.utc)


def _event(db, region_id, type="PICKUP", visibility="PUBLIC", start=START, end=END, key="pickup-1"):
    event = EventModel(
        region_id=region_id,
        type=type,
        title="[KR] Pickup Recruitment Notice",
        summary="Rate up",
        start_at_utc=start,
        end_at_utc=end,
        source_url="https://game.example.com/notice/1",
        canonical_event_key=key,
        confidence=1.0,
        visibility=visibility,
    )
    db.add(event)
    db.flush()
    return event


def _subscribe(db, user_id, region_id, enabled=True):
    db.add(UserGameSubscription(user_id=user_id, region_id=region_id, enabled=enabled))
    db.flush()


def _rule(db, user_id, trigger="ON_START", channel="WEBPUSH", event_type="PICKUP",
          scope="GLOBAL", region_id=None, offset_minutes=None, enabled=True):
    rule = NotificationRule(
        user_id=user_id, scope=scope, region_id=region_id, event_type=event_type,
        trigger=trigger, offset_minutes=offset_minutes, channel=channel, enabled=enabled,
    )
    db.add(rule)
    db.flush()
    return rule


def _schedules(db, **filters):
    return db.query(NotificationSchedule).filter_by(**filters).order_by(NotificationSchedule.id).all()


# ---------------------------------------------------------------------------
# Trigger times
# ---------------------------------------------------------------------------

class TestComputeScheduledAt:

    event = SimpleNamespace(start_at_utc=START, end_at_utc=END, created_at=datetime(2026, 2, 16, 9, 0))

    @pytest.mark.parametrize("trigger, offset, expected", [
        ("ON_START", None, START),
        ("ON_END", None, END),
        ("BEFORE_START", 30, START - timedelta(minutes=30)),
        ("BEFORE_END", 60, END - timedelta(minutes=60)),
        ("BEFORE_END", None, END),
        ("ON_PUBLISH", None, datetime(2026, 2, 16, 9, 0, tzinfo=timezone.utc)),
    ])
    def test_trigger_times(self, trigger, offset, expected):
        assert compute_scheduled_at(trigger, offset, self.event) == expected

    def test_missing_basis_date(self):
        undated = SimpleNamespace(start_at_utc=None, end_at_utc=None, created_at=None)
        assert compute_scheduled_at("ON_START", None, undated) is None
        assert compute_scheduled_at("BEFORE_END", 10, undated) is None

    def test_on_publish_without_created_at_uses_now(self, now):
        undated = SimpleNamespace(start_at_utc=None, end_at_utc=None, created_at=None)
        assert compute_scheduled_at("ON_PUBLISH", None, undated, now) == now

    def test_dedupe_key(self):
        assert make_dedupe_key(7, 42, "EMAIL", "BEFORE_END", 60) == "7:42:EMAIL:BEFORE_END:60"


# ---------------------------------------------------------------------------
# Planning one event
# ---------------------------------------------------------------------------

class TestPlanForEvent:

    def test_fans_out_to_subscribed_users_with_matching_rules(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER, trigger="ON_START", channel="WEBPUSH")
        _rule(db_session, USER, trigger="BEFORE_END", channel="EMAIL", offset_minutes=60)
        _rule(db_session, USER, trigger="ON_START", event_type="MAINTENANCE")
        event = _event(db_session, region_id)

        result = plan_notifications_for_event(db_session, event.id, now=now)

        assert (result.planned, result.skipped, result.reason) == (2, 0, "ok")
        rows = _schedules(db_session, event_id=event.id)
        assert [(r.trigger_type, r.channel, as_utc(r.scheduled_at_utc)) for r in rows] == [
            ("ON_START", "WEBPUSH", START),
            ("BEFORE_END", "EMAIL", END - timedelta(minutes=60)),
        ]
        assert {r.status for r in rows} == {"PENDING"}
        assert rows[1].dedupe_key == f"{USER}:{event.id}:EMAIL:BEFORE_END:60"
        assert rows[1].payload_json == {
            "eventTitle": "[KR] Pickup Recruitment Notice",
            "eventType": "PICKUP",
            "trigger": "BEFORE_END",
            "offsetMinutes": 60,
            "channel": "EMAIL",
        }

    def test_unsubscribed_or_disabled_users_get_nothing(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id, enabled=False)
        _rule(db_session, USER)
        _rule(db_session, OTHER_USER)
        event = _event(db_session, region_id)

        assert plan_notifications_for_event(db_session, event.id, now=now).planned == 0

    def test_disabled_rule_is_ignored(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER, enabled=False)
        event = _event(db_session, region_id)
        assert plan_notifications_for_event(db_session, event.id, now=now).planned == 0

    def test_region_scoped_rule_matches_only_its_region(self, db_session, catalog, now):
        region = catalog["region"]
        other = Region(game_id=region.game_id, code="JP", timezone="Asia/Tokyo")
        db_session.add(other)
        db_session.flush()

        _subscribe(db_session, USER, region.id)
        _subscribe(db_session, USER, other.id)
        _rule(db_session, USER, scope="REGION", region_id=other.id)

        kr_event = _event(db_session, region.id, key="kr")
        jp_event = _event(db_session, other.id, key="jp")

        assert plan_notifications_for_event(db_session, kr_event.id, now=now).planned == 0
        assert plan_notifications_for_event(db_session, jp_event.id, now=now).planned == 1

    def test_non_public_event_plans_nothing(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER)
        event = _event(db_session, region_id, visibility="NEED_REVIEW")
        assert plan_notifications_for_event(db_session, event.id, now=now).planned == 0
        assert _schedules(db_session) == []

    def test_past_and_undated_triggers_are_skipped(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER, trigger="ON_START")
        _rule(db_session, USER, trigger="ON_END")
        event = _event(db_session, region_id, start=now - timedelta(hours=1), end=None)

        result = plan_notifications_for_event(db_session, event.id, now=now)
        assert (result.planned, result.skipped) == (0, 2)

    def test_recent_past_within_grace_is_planned(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER)
        event = _event(db_session, region_id, start=now - timedelta(minutes=3))
        assert plan_notifications_for_event(db_session, event.id, now=now).planned == 1

    def test_unknown_event(self, db_session, now):
        result = plan_notifications_for_event(db_session, 404, now=now)
        assert (result.planned, result.reason) == (0, "event_not_found")


# ---------------------------------------------------------------------------
# Re-planning
# ---------------------------------------------------------------------------

class TestReplan:

    def test_replanning_is_idempotent(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER)
        event = _event(db_session, region_id)

        plan_notifications_for_event(db_session, event.id, now=now)
        plan_notifications_for_event(db_session, event.id, now=now)

        assert len(_schedules(db_session)) == 1

    def test_sent_and_processing_rows_survive(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER, trigger="ON_START")
        _rule(db_session, USER, trigger="ON_END")
        event = _event(db_session, region_id)
        plan_notifications_for_event(db_session, event.id, now=now)

        start_row, end_row = _schedules(db_session)
        start_row.status = "SENT"
        end_row.status = "PROCESSING"
        db_session.flush()

        event.start_at_utc = START + timedelta(hours=2)
        db_session.flush()
        plan_notifications_for_event(db_session, event.id, now=now)
        db_session.expire_all()

        rows = _schedules(db_session)
        assert [r.status for r in rows] == ["SENT", "PROCESSING"]
        assert as_utc(rows[0].scheduled_at_utc) == START + timedelta(hours=2)

    def test_failed_rows_are_replanned_as_pending(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER)
        event = _event(db_session, region_id)
        plan_notifications_for_event(db_session, event.id, now=now)
        _schedules(db_session)[0].status = "FAILED"
        db_session.flush()

        plan_notifications_for_event(db_session, event.id, now=now)
        db_session.expire_all()
        assert [r.status for r in _schedules(db_session)] == ["PENDING"]

    def test_hiding_an_event_drops_pending_rows(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER)
        event = _event(db_session, region_id)
        plan_notifications_for_event(db_session, event.id, now=now)

        event.visibility = "HIDDEN"
        db_session.flush()
        plan_notifications_for_event(db_session, event.id, now=now)
        assert _schedules(db_session) == []


# ---------------------------------------------------------------------------
# Rebuild for one user
# ---------------------------------------------------------------------------

class TestRebuildForUser:

    def test_rebuild_covers_current_events_of_subscribed_regions(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER)
        _event(db_session, region_id, key="current")
        _event(db_session, region_id, key="over", start=now - timedelta(days=10), end=now - timedelta(days=3))
        _event(db_session, region_id, key="hidden", visibility="NEED_REVIEW")

        result = rebuild_schedules_for_user(db_session, USER, now=now)

        assert (result.events, result.planned) == (1, 1)
        assert len(_schedules(db_session, user_id=USER)) == 1

    def test_rebuild_leaves_other_users_alone(self, db_session, catalog, now):
        region_id = catalog["region"].id
        for user_id in (USER, OTHER_USER):
            _subscribe(db_session, user_id, region_id)
            _rule(db_session, user_id)
        event = _event(db_session, region_id)
        plan_notifications_for_event(db_session, event.id, now=now)

        db_session.query(NotificationRule).filter_by(user_id=USER).delete()
        rebuild_schedules_for_user(db_session, USER, now=now)

        assert [r.user_id for r in _schedules(db_session)] == [OTHER_USER]


# ---------------------------------------------------------------------------
# Reviewer overrides
# ---------------------------------------------------------------------------

class TestReviewEvent:

    def test_publishing_a_reviewed_event_plans_it(self, db_session, catalog, now):
        region_id = catalog["region"].id
        _subscribe(db_session, USER, region_id)
        _rule(db_session, USER, event_type="EVENT")
        event = _event(db_session, region_id, type="EVENT", visibility="NEED_REVIEW", start=None, end=None)

        review_event(
            db_session, event.id, now=now,
            visibility="PUBLIC", start_at_utc=datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc),
        )

        rows = _schedules(db_session, event_id=event.id)
        assert len(rows) == 1
        assert as_utc(rows[0].scheduled_at_utc) == datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc)

    def test_title_is_normalized(self, db_session, catalog, now):
        event = _event(db_session, catalog["region"].id)
        review_event(db_session, event.id, now=now, title="  New   title ")
        assert event.title == "New title"

    @pytest.mark.parametrize("changes", [
        {"visibility": "SECRET"},
        {"type": "RAID"},
        {"title": "   "},
        {"confidence": 0.9},
        {"end_at_utc": START - timedelta(days=1)},
    ])
    def test_invalid_review(self, db_session, catalog, now, changes):
        event = _event(db_session, catalog["region"].id)
        with pytest.raises(EventReviewError):
            review_event(db_session, event.id, now=now, **changes)

    def test_unknown_event(self, db_session, now):
        with pytest.raises(EventNotFoundError):
            review_event(db_session, 404, now=now, visibility="PUBLIC")
