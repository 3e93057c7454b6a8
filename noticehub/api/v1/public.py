"""
Public event feed
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from noticehub.api.deps import CamelModel, get_db
from noticehub.application.events import list_public_events
from noticehub.infrastructure.db.models import EventModel
from noticehub.utils.timeutils import as_utc


router = APIRouter(prefix="/api/events", tags=["events"])


class EventResponse(CamelModel):
    id: int
    region_id: int
    type: str
    title: str
    summary: str | None
    start_at_utc: datetime | None
    end_at_utc: datetime | None
    source_url: str
    confidence: float
    visibility: str


def event_to_response(event: EventModel) -> EventResponse:
    return EventResponse(
        id=event.id,
        region_id=event.region_id,
        type=event.type,
        title=event.title,
        summary=event.summary,
        start_at_utc=as_utc(event.start_at_utc),
        end_at_utc=as_utc(event.end_at_utc),
        source_url=event.source_url,
        confidence=float(event.confidence),
        visibility=event.visibility,
    )


@router.get("", response_model=list[EventResponse])
def list_events(
    region_id: int | None = Query(default=None, alias="regionId"),
    type: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """PUBLIC events, latest start first"""
    events = list_public_events(db, region_id=region_id, event_type=type, limit=limit)
    return [event_to_response(e) for e in events]
