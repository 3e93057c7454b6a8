"""
Current-user preferences: region subscriptions, notification rules, feed
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from noticehub.api.deps import CamelModel, get_current_user_id, get_db
from noticehub.api.v1.public import EventResponse, event_to_response
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
from noticehub.infrastructure.db.models import EventModel, NotificationRule, UserGameSubscription


router = APIRouter(prefix="/api/me", tags=["me"])


# === Request/Response models ===

class SubscriptionRequest(CamelModel):
    region_id: int
    enabled: bool = True


class SubscriptionResponse(CamelModel):
    region_id: int
    enabled: bool


class CreateRuleRequest(CamelModel):
    scope: str
    region_id: int | None = None
    event_type: str
    trigger: str
    offset_minutes: int | None = None
    channel: str
    enabled: bool = True


class UpdateRuleRequest(CamelModel):
    scope: str | None = None
    region_id: int | None = None
    event_type: str | None = None
    trigger: str | None = None
    offset_minutes: int | None = None
    channel: str | None = None
    enabled: bool | None = None


class RuleResponse(CamelModel):
    id: int
    scope: str
    region_id: int | None
    event_type: str
    trigger: str
    offset_minutes: int | None
    channel: str
    enabled: bool


def _rule_response(rule: NotificationRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        scope=rule.scope,
        region_id=rule.region_id,
        event_type=rule.event_type,
        trigger=rule.trigger,
        offset_minutes=rule.offset_minutes,
        channel=rule.channel,
        enabled=rule.enabled,
    )


# === Subscriptions ===

@router.get("/subscriptions", response_model=list[SubscriptionResponse])
def get_subscriptions(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [
        SubscriptionResponse(region_id=s.region_id, enabled=s.enabled)
        for s in list_subscriptions(db, user_id)
    ]


@router.put("/subscriptions", response_model=SubscriptionResponse)
def put_subscription(
    req: SubscriptionRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Subscribe to a region (or toggle an existing subscription)"""
    try:
        SetRegionSubscriptionUseCase(db).execute(user_id, req.region_id, req.enabled)
    except PreferenceValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SubscriptionResponse(region_id=req.region_id, enabled=req.enabled)


@router.delete("/subscriptions/{region_id}")
def delete_subscription(
    region_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    deleted = RemoveRegionSubscriptionUseCase(db).execute(user_id, region_id)
    return {"success": True, "deleted": deleted}


@router.get("/feed", response_model=list[EventResponse])
def feed(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """PUBLIC events of the user's enabled regions, soonest first"""
    region_ids = [
        row.region_id for row in db.query(UserGameSubscription).filter(
            UserGameSubscription.user_id == user_id,
            UserGameSubscription.enabled.is_(True),
        )
    ]
    if not region_ids:
        return []

    events = db.query(EventModel).filter(
        EventModel.visibility == "PUBLIC",
        EventModel.region_id.in_(region_ids),
    ).order_by(EventModel.start_at_utc.asc().nulls_last(), EventModel.id).limit(100).all()
    return [event_to_response(e) for e in events]


# === Rules ===

@router.get("/rules", response_model=list[RuleResponse])
def get_rules(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [_rule_response(r) for r in list_rules(db, user_id)]


@router.post("/rules", response_model=RuleResponse, status_code=201)
def create_rule(
    req: CreateRuleRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        rule_id = CreateNotificationRuleUseCase(db).execute(
            user_id=user_id,
            scope=req.scope,
            region_id=req.region_id,
            event_type=req.event_type,
            trigger=req.trigger,
            offset_minutes=req.offset_minutes,
            channel=req.channel,
            enabled=req.enabled,
        )
    except PreferenceValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _rule_response(db.get(NotificationRule, rule_id))


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    req: UpdateRuleRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    changes = req.model_dump(exclude_unset=True)
    try:
        UpdateNotificationRuleUseCase(db).execute(rule_id, user_id, **changes)
    except PreferenceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PreferenceValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _rule_response(db.get(NotificationRule, rule_id))


@router.delete("/rules/{rule_id}")
def delete_rule(
    rule_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        DeleteNotificationRuleUseCase(db).execute(rule_id, user_id)
    except PreferenceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}
