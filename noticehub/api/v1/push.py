"""
Web Push subscription API endpoints.
"""
from fastapi import APIRouter, Request, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel

from noticehub.api.deps import get_current_user_id, get_db
from noticehub.infrastructure.db.models import PushSubscription

router = APIRouter(prefix="/api/push", tags=["push"])


class PushKeys(BaseModel):
    p256dh: str
    auth: str


class SubscribeRequest(BaseModel):
    endpoint: str
    keys: PushKeys


class UnsubscribeRequest(BaseModel):
    endpoint: str


@router.post("/subscribe")
def subscribe(
    body: SubscribeRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Register (or re-assign) a device endpoint to the session user"""
    existing = db.query(PushSubscription).filter(
        PushSubscription.endpoint == body.endpoint
    ).first()

    user_agent = request.headers.get("user-agent")
    if existing:
        existing.user_id = user_id
        existing.p256dh = body.keys.p256dh
        existing.auth = body.keys.auth
        existing.user_agent = user_agent
    else:
        db.add(PushSubscription(
            user_id=user_id,
            endpoint=body.endpoint,
            p256dh=body.keys.p256dh,
            auth=body.keys.auth,
            user_agent=user_agent,
        ))

    db.commit()
    return {"success": True}


@router.delete("/unsubscribe")
def unsubscribe(
    body: UnsubscribeRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    deleted = db.query(PushSubscription).filter(
        PushSubscription.endpoint == body.endpoint,
        PushSubscription.user_id == user_id,
    ).delete()
    db.commit()

    return {"success": True, "deleted": deleted}
