"""
User preferences use cases: region subscriptions and notification rules.

Both are inputs to planning, so every change rebuilds the user's schedules.
"""
from sqlalchemy.orm import Session

from noticehub.application.scheduling import (
    CHANNELS, RULE_SCOPES, TRIGGERS, rebuild_schedules_for_user,
)
from noticehub.domain.text_extraction import EVENT_TYPES
from noticehub.infrastructure.db.models import NotificationRule, Region, UserGameSubscription

RULE_FIELDS = ("scope", "region_id", "event_type", "trigger", "offset_minutes", "channel", "enabled")


class PreferenceValidationError(ValueError):
    pass


class PreferenceNotFoundError(LookupError):
    pass


def validate_rule(
    db: Session,
    scope: str,
    region_id: int | None,
    event_type: str,
    trigger: str,
    offset_minutes: int | None,
    channel: str,
) -> None:
    """Raises PreferenceValidationError when a rule shape is invalid."""
    if scope not in RULE_SCOPES:
        raise PreferenceValidationError(f"Unknown scope: {scope}")
    if scope == "REGION":
        if region_id is None:
            raise PreferenceValidationError("region_id is required when scope is REGION")
        if db.get(Region, region_id) is None:
            raise PreferenceValidationError(f"Region {region_id} not found")
    elif region_id is not None:
        raise PreferenceValidationError("region_id must be empty when scope is GLOBAL")
    if event_type not in EVENT_TYPES:
        raise PreferenceValidationError(f"Unknown event type: {event_type}")
    if trigger not in TRIGGERS:
        raise PreferenceValidationError(f"Unknown trigger: {trigger}")
    if channel not in CHANNELS:
        raise PreferenceValidationError(f"Unknown channel: {channel}")
    if offset_minutes is not None and offset_minutes < 0:
        raise PreferenceValidationError("offset_minutes must not be negative")


def _find_duplicate_rule(db: Session, user_id: int, exclude_id: int | None = None, **shape) -> NotificationRule | None:
    query = db.query(NotificationRule).filter(
        NotificationRule.user_id == user_id,
        NotificationRule.scope == shape["scope"],
        NotificationRule.event_type == shape["event_type"],
        NotificationRule.trigger == shape["trigger"],
        NotificationRule.channel == shape["channel"],
    )
    if shape["region_id"] is None:
        query = query.filter(NotificationRule.region_id.is_(None))
    else:
        query = query.filter(NotificationRule.region_id == shape["region_id"])
    if shape["offset_minutes"] is None:
        query = query.filter(NotificationRule.offset_minutes.is_(None))
    else:
        query = query.filter(NotificationRule.offset_minutes == shape["offset_minutes"])
    if exclude_id is not None:
        query = query.filter(NotificationRule.id != exclude_id)
    return query.first()


class SetRegionSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, user_id: int, region_id: int, enabled: bool = True) -> int:
        if self.db.get(Region, region_id) is None:
            raise PreferenceValidationError(f"Region {region_id} not found")

        sub = self.db.query(UserGameSubscription).filter(
            UserGameSubscription.user_id == user_id,
            UserGameSubscription.region_id == region_id,
        ).first()
        if sub:
            sub.enabled = enabled
        else:
            sub = UserGameSubscription(user_id=user_id, region_id=region_id, enabled=enabled)
            self.db.add(sub)
        self.db.flush()

        rebuild_schedules_for_user(self.db, user_id)
        self.db.commit()
        return sub.id


class RemoveRegionSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, user_id: int, region_id: int) -> bool:
        deleted = self.db.query(UserGameSubscription).filter(
            UserGameSubscription.user_id == user_id,
            UserGameSubscription.region_id == region_id,
        ).delete()
        rebuild_schedules_for_user(self.db, user_id)
        self.db.commit()
        return bool(deleted)


class CreateNotificationRuleUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        user_id: int,
        scope: str,
        event_type: str,
        trigger: str,
        channel: str,
        region_id: int | None = None,
        offset_minutes: int | None = None,
        enabled: bool = True,
    ) -> int:
        validate_rule(self.db, scope, region_id, event_type, trigger, offset_minutes, channel)
        shape = dict(
            scope=scope, region_id=region_id, event_type=event_type,
            trigger=trigger, offset_minutes=offset_minutes, channel=channel,
        )
        if _find_duplicate_rule(self.db, user_id, **shape):
            raise PreferenceValidationError("An identical rule already exists")

        rule = NotificationRule(user_id=user_id, enabled=enabled, **shape)
        self.db.add(rule)
        self.db.flush()

        rebuild_schedules_for_user(self.db, user_id)
        self.db.commit()
        return rule.id


class UpdateNotificationRuleUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, rule_id: int, user_id: int, **changes) -> None:
        rule = self.db.query(NotificationRule).filter(
            NotificationRule.id == rule_id,
            NotificationRule.user_id == user_id,
        ).first()
        if not rule:
            raise PreferenceNotFoundError(f"Rule {rule_id} not found")

        unknown = set(changes) - set(RULE_FIELDS)
        if unknown:
            raise PreferenceValidationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")

        merged = {name: changes.get(name, getattr(rule, name)) for name in RULE_FIELDS}
        # switching to GLOBAL drops the region
        if changes.get("scope") == "GLOBAL" and "region_id" not in changes:
            merged["region_id"] = None
        enabled = merged.pop("enabled")
        if enabled is None:
            enabled = rule.enabled
        validate_rule(self.db, **merged)
        if _find_duplicate_rule(self.db, user_id, exclude_id=rule.id, **merged):
            raise PreferenceValidationError("An identical rule already exists")

        for name, value in merged.items():
            setattr(rule, name, value)
        rule.enabled = bool(enabled)
        self.db.flush()

        rebuild_schedules_for_user(self.db, user_id)
        self.db.commit()


class DeleteNotificationRuleUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, rule_id: int, user_id: int) -> None:
        rule = self.db.query(NotificationRule).filter(
            NotificationRule.id == rule_id,
            NotificationRule.user_id == user_id,
        ).first()
        if not rule:
            raise PreferenceNotFoundError(f"Rule {rule_id} not found")

        self.db.delete(rule)
        self.db.flush()

        rebuild_schedules_for_user(self.db, user_id)
        self.db.commit()


def list_subscriptions(db: Session, user_id: int) -> list[UserGameSubscription]:
    return db.query(UserGameSubscription).filter(
        UserGameSubscription.user_id == user_id
    ).order_by(UserGameSubscription.region_id).all()


def list_rules(db: Session, user_id: int) -> list[NotificationRule]:
    return db.query(NotificationRule).filter(
        NotificationRule.user_id == user_id
    ).order_by(NotificationRule.id.desc()).all()
