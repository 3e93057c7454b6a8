"""
WEBPUSH channel transport for notice notifications.

Dispatch hands over a schedule's rendered message; this module signs it with
the VAPID keys from settings and posts it to each of the user's registered
browsers. Endpoints the push service reports as gone (404/410) are pruned.
"""
import json
import logging

from pywebpush import webpush, WebPushException
from sqlalchemy.orm import Session

from noticehub.config import Settings, get_settings
from noticehub.infrastructure.db.models import PushSubscription

logger = logging.getLogger(__name__)

GONE_STATUSES = (404, 410)


def _vapid_private_key(settings: Settings) -> str:
    """VAPID key as pywebpush expects it: the base64 body, PEM armor removed."""
    key = settings.VAPID_PRIVATE_KEY.replace("\\n", "\n")
    if "BEGIN" not in key:
        return key
    return "".join(
        line.strip() for line in key.splitlines()
        if line.strip() and not line.strip().startswith("-----")
    )


def _subscription_info(subscription: PushSubscription) -> dict:
    return {
        "endpoint": subscription.endpoint,
        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
    }


def list_user_subscriptions(db: Session, user_id: int) -> list[PushSubscription]:
    return db.query(PushSubscription).filter(PushSubscription.user_id == user_id).all()


def send_web_push(
    db: Session,
    subscription: PushSubscription,
    message: dict,
    settings: Settings | None = None,
) -> bool:
    """
    Deliver one notice message to one browser.

    message: {"title": event title, "body": trigger text, "url": "/events/<id>"}

    False when VAPID is not configured or the push service refuses the
    message. A gone endpoint is deleted and flushed; the caller commits.
    """
    settings = settings or get_settings()
    if not settings.webpush_configured:
        logger.warning("WEBPUSH requested but VAPID keys are empty; nothing sent")
        return False

    try:
        webpush(
            subscription_info=_subscription_info(subscription),
            data=json.dumps(message, ensure_ascii=False),
            vapid_private_key=_vapid_private_key(settings),
            vapid_claims={"sub": settings.VAPID_MAILTO},
        )
    except WebPushException as e:
        status_code = e.response.status_code if e.response is not None else 0
        if status_code in GONE_STATUSES:
            logger.info("Pruning gone push endpoint (HTTP %d) for user %s", status_code, subscription.user_id)
            db.query(PushSubscription).filter(PushSubscription.id == subscription.id).delete()
            db.flush()
        else:
            logger.error("Push to user %s rejected (HTTP %d): %s", subscription.user_id, status_code, e)
        return False
    return True


def send_push_to_user(db: Session, user_id: int, message: dict, settings: Settings | None = None) -> int:
    """Fan a message out to all of a user's browsers; returns how many accepted it."""
    return sum(
        1 for subscription in list_user_subscriptions(db, user_id)
        if send_web_push(db, subscription, message, settings)
    )
