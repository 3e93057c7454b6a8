"""
Tests for the current-user API (subscriptions, rules, feed), push endpoints,
the public event feed and health checks.
"""
from datetime import datetime, timezone

import pytest

from noticehub.api.deps import get_current_user_id
from noticehub.infrastructure.db.models import EventModel, NotificationSchedule, PushSubscription

USER = 1


@pytest.fixture
def user_client(app, client):
    app.dependency_overrides[get_current_user_id] = lambda: USER
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def region_id(catalog):
    return catalog["region"].id


def _event(db, region_id, key, start, visibility="PUBLIC", type="PICKUP"):
    event = EventModel(
        region_id=region_id,
        type=type,
        title=f"Notice {key}",
        start_at_utc=start,
        source_url=f"https://game.example.com/notice/{key}",
        canonical_event_key=key,
        confidence=1.0 if visibility == "PUBLIC" else 0.55,
        visibility=visibility,
    )
    db.add(event)
    db.commit()
    return event.id


# ── Auth ─────────────────────────────────────────────────────────────────────

class TestAuth:

    @pytest.mark.parametrize("method, path", [
        ("get", "/api/me/subscriptions"),
        ("get", "/api/me/rules"),
        ("get", "/api/me/feed"),
    ])
    def test_requires_session_user(self, client, method, path):
        assert getattr(client, method)(path).status_code == 401

    def test_push_requires_session_user(self, client):
        resp = client.post("/api/push/subscribe", json={
            "endpoint": "https://push.example.com/a",
            "keys": {"p256dh": "k", "auth": "a"},
        })
        assert resp.status_code == 401


# ── Subscriptions and feed ───────────────────────────────────────────────────

class TestSubscriptions:

    def test_subscribe_list_and_remove(self, user_client, region_id):
        resp = user_client.put("/api/me/subscriptions", json={"regionId": region_id})
        assert resp.status_code == 200
        assert resp.json() == {"regionId": region_id, "enabled": True}

        assert user_client.get("/api/me/subscriptions").json() == [{"regionId": region_id, "enabled": True}]

        resp = user_client.delete(f"/api/me/subscriptions/{region_id}")
        assert resp.json() == {"success": True, "deleted": True}
        assert user_client.get("/api/me/subscriptions").json() == []

    def test_unknown_region(self, user_client):
        assert user_client.put("/api/me/subscriptions", json={"regionId": 999}).status_code == 400

    def test_feed_lists_public_events_of_enabled_regions(self, user_client, db_session, region_id):
        later = _event(db_session, region_id, "later", datetime(2099, 5, 1, tzinfo=timezone.utc))
        sooner = _event(db_session, region_id, "sooner", datetime(2099, 4, 1, tzinfo=timezone.utc))
        _event(db_session, region_id, "review", datetime(2099, 4, 2, tzinfo=timezone.utc), visibility="NEED_REVIEW")

        assert user_client.get("/api/me/feed").json() == []

        user_client.put("/api/me/subscriptions", json={"regionId": region_id})
        feed = user_client.get("/api/me/feed").json()
        assert [e["id"] for e in feed] == [sooner, later]

        user_client.put("/api/me/subscriptions", json={"regionId": region_id, "enabled": False})
        assert user_client.get("/api/me/feed").json() == []


# ── Rules ────────────────────────────────────────────────────────────────────

class TestRules:

    RULE = {"scope": "GLOBAL", "eventType": "PICKUP", "trigger": "BEFORE_START", "offsetMinutes": 30, "channel": "WEBPUSH"}

    def test_rule_lifecycle_plans_schedules(self, user_client, db_session, region_id):
        event_id = _event(db_session, region_id, "pickup", datetime(2099, 4, 1, 10, 0, tzinfo=timezone.utc))
        user_client.put("/api/me/subscriptions", json={"regionId": region_id})

        created = user_client.post("/api/me/rules", json=self.RULE)
        assert created.status_code == 201
        rule = created.json()
        assert rule["trigger"] == "BEFORE_START"
        assert rule["offsetMinutes"] == 30
        assert rule["enabled"] is True

        db_session.expire_all()
        schedule = db_session.query(NotificationSchedule).one()
        assert schedule.event_id == event_id
        assert schedule.scheduled_at_utc.replace(tzinfo=None) == datetime(2099, 4, 1, 9, 30)

        updated = user_client.patch(f"/api/me/rules/{rule['id']}", json={"channel": "EMAIL"})
        assert updated.status_code == 200
        assert updated.json()["channel"] == "EMAIL"
        db_session.expire_all()
        assert db_session.query(NotificationSchedule).one().channel == "EMAIL"

        assert [r["id"] for r in user_client.get("/api/me/rules").json()] == [rule["id"]]

        assert user_client.delete(f"/api/me/rules/{rule['id']}").json() == {"success": True}
        db_session.expire_all()
        assert db_session.query(NotificationSchedule).count() == 0

    def test_invalid_rule(self, user_client):
        resp = user_client.post("/api/me/rules", json=dict(self.RULE, trigger="SOMETIME"))
        assert resp.status_code == 400
        assert "trigger" in resp.json()["detail"]

    def test_duplicate_rule(self, user_client):
        user_client.post("/api/me/rules", json=self.RULE)
        assert user_client.post("/api/me/rules", json=self.RULE).status_code == 400

    def test_unknown_rule(self, user_client):
        assert user_client.patch("/api/me/rules/999", json={"enabled": False}).status_code == 404
        assert user_client.delete("/api/me/rules/999").status_code == 404


# ── Push subscriptions ───────────────────────────────────────────────────────

class TestPushRoutes:

    SUBSCRIPTION = {"endpoint": "https://push.example.com/a", "keys": {"p256dh": "k1", "auth": "a1"}}

    def test_subscribe_is_idempotent_per_endpoint(self, user_client, db_session):
        assert user_client.post("/api/push/subscribe", json=self.SUBSCRIPTION).json() == {"success": True}
        renewed = dict(self.SUBSCRIPTION, keys={"p256dh": "k2", "auth": "a2"})
        user_client.post("/api/push/subscribe", json=renewed)

        db_session.expire_all()
        subs = db_session.query(PushSubscription).all()
        assert [(s.user_id, s.p256dh, s.auth) for s in subs] == [(USER, "k2", "a2")]

    def test_unsubscribe(self, user_client, db_session):
        user_client.post("/api/push/subscribe", json=self.SUBSCRIPTION)
        resp = user_client.request("DELETE", "/api/push/unsubscribe", json={"endpoint": self.SUBSCRIPTION["endpoint"]})
        assert resp.json() == {"success": True, "deleted": 1}

        db_session.expire_all()
        assert db_session.query(PushSubscription).count() == 0


# ── Public feed and health ───────────────────────────────────────────────────

class TestPublicRoutes:

    def test_public_events_filtering(self, client, db_session, region_id):
        pickup = _event(db_session, region_id, "pickup", datetime(2099, 4, 1, tzinfo=timezone.utc))
        _event(db_session, region_id, "maint", datetime(2099, 5, 1, tzinfo=timezone.utc), type="MAINTENANCE")
        _event(db_session, region_id, "review", datetime(2099, 6, 1, tzinfo=timezone.utc), visibility="NEED_REVIEW")

        everything = client.get("/api/events").json()
        assert [e["title"] for e in everything] == [
            "Notice maint", "Notice pickup",
        ]

        pickups = client.get("/api/events", params={"regionId": region_id, "type": "PICKUP"}).json()
        assert [e["id"] for e in pickups] == [pickup]
        assert pickups[0]["startAtUtc"].startswith("2099-04-01T00:00:00")
        assert pickups[0]["regionId"] == region_id

        assert client.get("/api/events", params={"regionId": 999}).json() == []

    def test_health_and_ready(self, client):
        assert client.get("/health").text == "ok"
        assert client.get("/ready").text == "ok"
