"""Tests for preferences use cases: region subscriptions and notification rules."""
from datetime import datetime, timezone

import pytest

from noticehub.application.preferences import (
    CreateNotificationRuleUseCase,
    DeleteNotificationRuleUseCase,
    PreferenceNotFoundError,
    PreferenceValidationError,
    RemoveRegionSubscriptionUseCase,
    SetRegionSubscriptionUseCase,
    UpdateNotificationRuleUseCase,
    list_rules,
    list_subscriptions,
)
from noticehub.infrastructure.db.models import EventModel, NotificationRule, NotificationSchedule

USER = 1
# planning runs on the wall clock here, so events live far in the future
START = datetime(2099, 3, 1, 1, 0, tzinfo=timezone.utc)
END = datetime(2099, 3, 8, 2, 30, tzinfo=timezone.utc)


@pytest.fixture
def region_id(catalog):
    return catalog["region"].id


@pytest.fixture
def event(db_session, region_id):
    event = EventModel(
        region_id=region_id,
        type="PICKUP",
        title="Anniversary pickup",
        start_at_utc=START,
        end_at_utc=END,
        source_url="https://game.example.com/notice/1",
        canonical_event_key="anniversary",
        confidence=1.0,
        visibility="PUBLIC",
    )
    db_session.add(event)
    db_session.commit()
    return event


def _rule(db, **overrides):
    params = dict(user_id=USER, scope="GLOBAL", event_type="PICKUP", trigger="ON_START", channel="WEBPUSH")
    params.update(overrides)
    return CreateNotificationRuleUseCase(db).execute(**params)


def _schedules(db):
    db.expire_all()
    return db.query(NotificationSchedule).order_by(NotificationSchedule.id).all()


# ── Region subscriptions ─────────────────────────────────────────────────────

class TestRegionSubscriptions:

    def test_subscribe_and_toggle(self, db_session, region_id):
        sub_id = SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        again = SetRegionSubscriptionUseCase(db_session).execute(USER, region_id, enabled=False)

        assert again == sub_id
        subs = list_subscriptions(db_session, USER)
        assert [(s.region_id, s.enabled) for s in subs] == [(region_id, False)]

    def test_unknown_region(self, db_session):
        with pytest.raises(PreferenceValidationError):
            SetRegionSubscriptionUseCase(db_session).execute(USER, 999)

    def test_subscribing_plans_existing_events(self, db_session, region_id, event):
        _rule(db_session)
        assert _schedules(db_session) == []

        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)

        rows = _schedules(db_session)
        assert [(r.event_id, r.trigger_type) for r in rows] == [(event.id, "ON_START")]

    def test_disabling_drops_pending_schedules(self, db_session, region_id, event):
        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        _rule(db_session)
        assert len(_schedules(db_session)) == 1

        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id, enabled=False)
        assert _schedules(db_session) == []

    def test_remove_subscription(self, db_session, region_id, event):
        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        _rule(db_session)

        assert RemoveRegionSubscriptionUseCase(db_session).execute(USER, region_id) is True
        assert list_subscriptions(db_session, USER) == []
        assert _schedules(db_session) == []
        assert RemoveRegionSubscriptionUseCase(db_session).execute(USER, region_id) is False


# ── Rule validation ──────────────────────────────────────────────────────────

class TestRuleValidation:

    @pytest.mark.parametrize("overrides, message", [
        ({"scope": "PLANET"}, "scope"),
        ({"scope": "REGION"}, "region_id is required"),
        ({"scope": "REGION", "region_id": 999}, "not found"),
        ({"region_id": 1}, "must be empty"),
        ({"event_type": "RAID"}, "event type"),
        ({"trigger": "WHENEVER"}, "trigger"),
        ({"channel": "SMS"}, "channel"),
        ({"offset_minutes": -5}, "negative"),
    ])
    def test_invalid_rules(self, db_session, region_id, overrides, message):
        with pytest.raises(PreferenceValidationError, match=message):
            _rule(db_session, **overrides)

    def test_region_rule(self, db_session, region_id):
        rule_id = _rule(db_session, scope="REGION", region_id=region_id, trigger="BEFORE_END", offset_minutes=60)
        rule = db_session.get(NotificationRule, rule_id)
        assert (rule.scope, rule.region_id, rule.offset_minutes) == ("REGION", region_id, 60)

    def test_duplicate_rule(self, db_session):
        _rule(db_session)
        with pytest.raises(PreferenceValidationError, match="identical"):
            _rule(db_session)

    def test_same_shape_with_other_offset_is_allowed(self, db_session):
        _rule(db_session, trigger="BEFORE_START", offset_minutes=30)
        _rule(db_session, trigger="BEFORE_START", offset_minutes=60)
        assert len(list_rules(db_session, USER)) == 2


# ── Rule changes re-plan ─────────────────────────────────────────────────────

class TestRuleChanges:

    def test_update_rule_replans(self, db_session, region_id, event):
        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        rule_id = _rule(db_session)

        UpdateNotificationRuleUseCase(db_session).execute(rule_id, USER, trigger="BEFORE_END", offset_minutes=90)

        rows = _schedules(db_session)
        assert [(r.trigger_type, r.trigger_offset_minutes) for r in rows] == [("BEFORE_END", 90)]

    def test_disabling_rule_clears_schedules(self, db_session, region_id, event):
        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        rule_id = _rule(db_session)

        UpdateNotificationRuleUseCase(db_session).execute(rule_id, USER, enabled=False)

        assert db_session.get(NotificationRule, rule_id).enabled is False
        assert _schedules(db_session) == []

    def test_switching_to_global_drops_region(self, db_session, region_id):
        rule_id = _rule(db_session, scope="REGION", region_id=region_id)
        UpdateNotificationRuleUseCase(db_session).execute(rule_id, USER, scope="GLOBAL")
        rule = db_session.get(NotificationRule, rule_id)
        assert (rule.scope, rule.region_id) == ("GLOBAL", None)

    def test_update_into_duplicate_is_rejected(self, db_session):
        _rule(db_session, channel="EMAIL")
        rule_id = _rule(db_session)
        with pytest.raises(PreferenceValidationError):
            UpdateNotificationRuleUseCase(db_session).execute(rule_id, USER, channel="EMAIL")

    def test_update_unknown_field(self, db_session):
        rule_id = _rule(db_session)
        with pytest.raises(PreferenceValidationError):
            UpdateNotificationRuleUseCase(db_session).execute(rule_id, USER, priority=2)

    def test_other_users_rule_is_not_found(self, db_session):
        rule_id = _rule(db_session)
        with pytest.raises(PreferenceNotFoundError):
            UpdateNotificationRuleUseCase(db_session).execute(rule_id, 2, enabled=False)
        with pytest.raises(PreferenceNotFoundError):
            DeleteNotificationRuleUseCase(db_session).execute(rule_id, 2)

    def test_delete_rule_clears_schedules(self, db_session, region_id, event):
        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        rule_id = _rule(db_session)
        assert len(_schedules(db_session)) == 1

        DeleteNotificationRuleUseCase(db_session).execute(rule_id, USER)

        assert list_rules(db_session, USER) == []
        assert _schedules(db_session) == []

    def test_sent_schedules_survive_rule_deletion(self, db_session, region_id, event):
        SetRegionSubscriptionUseCase(db_session).execute(USER, region_id)
        rule_id = _rule(db_session)
        _schedules(db_session)[0].status = "SENT"
        db_session.commit()

        DeleteNotificationRuleUseCase(db_session).execute(rule_id, USER)
        assert [r.status for r in _schedules(db_session)] == ["SENT"]
