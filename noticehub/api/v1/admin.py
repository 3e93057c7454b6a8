"""
Admin API: ingest triggers, dispatch trigger, run logs and thin catalog CRUD.

All routes require the X-Admin-Key header.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import Field
from sqlalchemy.orm import Session

from noticehub.api.deps import CamelModel, get_app_settings, get_db, require_admin
from noticehub.api.v1.public import EventResponse, event_to_response
from noticehub.application.dispatch import MAX_DISPATCH_LIMIT, dispatch_due_notifications
from noticehub.application.events import EventNotFoundError, EventReviewError, review_event
from noticehub.application.ingest import (
    list_ingest_runs, reparse_raw_notice, run_due_source_fetches, run_source_fetch,
)
from noticehub.application.raw_notices import list_raw_notices
from noticehub.config import Settings
from noticehub.domain.errors import IngestError, RawNoticeNotFoundError, SourceNotFoundError
from noticehub.domain.source_config import SOURCE_TYPES
from noticehub.infrastructure.db.models import Game, Region, SourceModel
from noticehub.utils.timeutils import as_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# === Request/Response models ===

class FetchSummaryResponse(CamelModel):
    source_id: int
    mode: str
    fetched_count: int
    parsed_count: int
    error_count: int
    status: str


class DueSourceSummaryResponse(CamelModel):
    source_id: int
    status: str
    parsed_count: int
    error_count: int


class DueRunResponse(CamelModel):
    processed_sources: int
    summaries: list[DueSourceSummaryResponse]


class ReparseResponse(CamelModel):
    event_id: int
    visibility: str
    confidence: float


class DispatchResponse(CamelModel):
    picked: int
    sent: int
    failed: int


class IngestRunResponse(CamelModel):
    id: int
    source_id: int | None
    mode: str
    status: str
    fetched_count: int
    parsed_count: int
    error_count: int
    log_message: str | None
    started_at: datetime
    finished_at: datetime


class RawNoticeResponse(CamelModel):
    id: int
    source_id: int
    url: str
    title: str
    published_at: datetime | None
    fetched_at: datetime
    content_hash: str | None
    parser_version: str
    status: str


class CreateGameRequest(CamelModel):
    slug: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=128)
    icon_url: str | None = None


class GameResponse(CamelModel):
    id: int
    slug: str
    name: str
    icon_url: str | None


class CreateRegionRequest(CamelModel):
    game_id: int
    code: str = Field(min_length=1, max_length=8)
    timezone: str | None = None  # settings.TIMEZONE when omitted


class RegionResponse(CamelModel):
    id: int
    game_id: int
    code: str
    timezone: str


class CreateSourceRequest(CamelModel):
    region_id: int
    type: str
    base_url: str
    list_url: str | None = None
    enabled: bool = True
    fetch_interval_minutes: int = Field(default=30, ge=1)
    config: dict = Field(default_factory=dict)


class SourceResponse(CamelModel):
    id: int
    region_id: int
    type: str
    base_url: str
    list_url: str | None
    enabled: bool
    fetch_interval_minutes: int
    last_success_at: datetime | None
    last_error_at: datetime | None
    last_error_message: str | None
    config: dict


class ReviewEventRequest(CamelModel):
    type: str | None = None
    title: str | None = None
    summary: str | None = None
    start_at_utc: datetime | None = None
    end_at_utc: datetime | None = None
    visibility: str | None = None


# === Helpers ===

def _source_response(source: SourceModel) -> SourceResponse:
    return SourceResponse(
        id=source.id,
        region_id=source.region_id,
        type=source.type,
        base_url=source.base_url,
        list_url=source.list_url,
        enabled=source.enabled,
        fetch_interval_minutes=source.fetch_interval_minutes,
        last_success_at=as_utc(source.last_success_at),
        last_error_at=as_utc(source.last_error_at),
        last_error_message=source.last_error_message,
        config=source.config_json or {},
    )


# === Ingest ===

@router.post("/ingest/run-due", response_model=DueRunResponse)
def run_due(request: Request, settings: Settings = Depends(get_app_settings)):
    """Fetch every due source now"""
    result = run_due_source_fetches(
        request.app.state.session_factory,
        limit=settings.INGEST_DUE_LIMIT,
        max_workers=settings.INGEST_MAX_WORKERS,
        settings=settings,
    )
    return DueRunResponse(
        processed_sources=result.processed_sources,
        summaries=[
            DueSourceSummaryResponse(
                source_id=s.source_id, status=s.status,
                parsed_count=s.parsed_count, error_count=s.error_count,
            )
            for s in result.summaries
        ],
    )


@router.post("/sources/{source_id}/run-fetch", response_model=FetchSummaryResponse)
def run_fetch(
    source_id: int,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Fetch one source now (MANUAL run)"""
    try:
        summary = run_source_fetch(db, source_id, "MANUAL", settings=settings)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except IngestError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return FetchSummaryResponse(
        source_id=summary.source_id,
        mode=summary.mode,
        fetched_count=summary.fetched_count,
        parsed_count=summary.parsed_count,
        error_count=summary.error_count,
        status=summary.status,
    )


@router.post("/raw-notices/{raw_notice_id}/reparse", response_model=ReparseResponse)
def reparse(raw_notice_id: int, db: Session = Depends(get_db)):
    try:
        result = reparse_raw_notice(db, raw_notice_id)
    except (RawNoticeNotFoundError, SourceNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except IngestError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return ReparseResponse(
        event_id=result.event_id, visibility=result.visibility, confidence=result.confidence,
    )


@router.get("/ingest-runs", response_model=list[IngestRunResponse])
def ingest_runs(
    source_id: int | None = Query(default=None, alias="sourceId"),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return [
        IngestRunResponse(
            id=run.id,
            source_id=run.source_id,
            mode=run.mode,
            status=run.status,
            fetched_count=run.fetched_count,
            parsed_count=run.parsed_count,
            error_count=run.error_count,
            log_message=run.log_message,
            started_at=as_utc(run.started_at),
            finished_at=as_utc(run.finished_at),
        )
        for run in list_ingest_runs(db, source_id=source_id, limit=limit)
    ]


@router.get("/raw-notices", response_model=list[RawNoticeResponse])
def raw_notices(
    status: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return [
        RawNoticeResponse(
            id=raw.id,
            source_id=raw.source_id,
            url=raw.url,
            title=raw.title,
            published_at=as_utc(raw.published_at),
            fetched_at=as_utc(raw.fetched_at),
            content_hash=raw.content_hash,
            parser_version=raw.parser_version,
            status=raw.status,
        )
        for raw in list_raw_notices(db, status=status, limit=limit)
    ]


# === Dispatch ===

@router.post("/notifications/dispatch-due", response_model=DispatchResponse)
def dispatch_due(
    limit: int = 100,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Claim and deliver due schedules. limit is clamped to 1..500"""
    limit = max(1, min(limit, MAX_DISPATCH_LIMIT))
    result = dispatch_due_notifications(db, limit=limit, settings=settings)
    return DispatchResponse(picked=result.picked, sent=result.sent, failed=result.failed)


# === Catalog ===

@router.post("/games", response_model=GameResponse, status_code=201)
def create_game(req: CreateGameRequest, db: Session = Depends(get_db)):
    if db.query(Game).filter(Game.slug == req.slug).first():
        raise HTTPException(status_code=409, detail=f"Game {req.slug!r} already exists")

    game = Game(slug=req.slug, name=req.name, icon_url=req.icon_url)
    db.add(game)
    db.commit()
    return GameResponse(id=game.id, slug=game.slug, name=game.name, icon_url=game.icon_url)


@router.post("/regions", response_model=RegionResponse, status_code=201)
def create_region(
    req: CreateRegionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    if db.get(Game, req.game_id) is None:
        raise HTTPException(status_code=404, detail=f"Game {req.game_id} not found")
    existing = db.query(Region).filter(Region.game_id == req.game_id, Region.code == req.code).first()
    if existing:
        raise HTTPException(status_code=409, detail=f"Region {req.code} already exists for this game")

    region = Region(game_id=req.game_id, code=req.code, timezone=req.timezone or settings.TIMEZONE)
    db.add(region)
    db.commit()
    return RegionResponse(id=region.id, game_id=region.game_id, code=region.code, timezone=region.timezone)


@router.get("/sources", response_model=list[SourceResponse])
def list_sources(db: Session = Depends(get_db)):
    sources = db.query(SourceModel).order_by(SourceModel.id.desc()).all()
    return [_source_response(s) for s in sources]


@router.post("/sources", response_model=SourceResponse, status_code=201)
def create_source(req: CreateSourceRequest, db: Session = Depends(get_db)):
    if req.type not in SOURCE_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown source type: {req.type}")
    if db.get(Region, req.region_id) is None:
        raise HTTPException(status_code=404, detail=f"Region {req.region_id} not found")

    source = SourceModel(
        region_id=req.region_id,
        type=req.type,
        base_url=req.base_url,
        list_url=req.list_url,
        enabled=req.enabled,
        fetch_interval_minutes=req.fetch_interval_minutes,
        config_json=req.config,
    )
    db.add(source)
    db.commit()
    logger.info("Source %s created (%s %s)", source.id, source.type, source.list_url or source.base_url)
    return _source_response(source)


@router.patch("/events/{event_id}", response_model=EventResponse)
def review(event_id: int, req: ReviewEventRequest, db: Session = Depends(get_db)):
    """Reviewer override; re-plans the event's schedules"""
    changes = req.model_dump(exclude_unset=True)
    try:
        event = review_event(db, event_id, **changes)
    except EventNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EventReviewError as e:
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    return event_to_response(event)
