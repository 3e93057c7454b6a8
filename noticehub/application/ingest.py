"""
Ingest orchestration: fetch a source, store raw notices, parse changed ones.

Transactions:
- each candidate is committed on its own, so one bad item never rolls back
  its siblings;
- a source-level failure (list fetch, configuration) is recorded on the
  source and in the run log, then re-raised.

Usage (CLI):
    python -m noticehub.application.ingest            # run all due sources once
    python -m noticehub.application.ingest --source 3  # fetch one source now
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from noticehub.application.collector import build_http_session, fetch_raw_candidates
from noticehub.application.events import EventUpsertResult, upsert_event_from_raw
from noticehub.application.raw_notices import set_raw_notice_status, upsert_raw_notice
from noticehub.config import Settings, get_settings
from noticehub.domain.errors import (
    IngestError, RawNoticeNotFoundError, SourceFetchError, SourceNotFoundError,
)
from noticehub.infrastructure.db.models import IngestRun, RawNotice, SourceModel
from noticehub.utils.timeutils import utcnow, as_utc

logger = logging.getLogger(__name__)

RUN_MODES = {"MANUAL", "SCHEDULED", "REPARSE"}
RUN_STATUSES = {"SUCCESS", "PARTIAL", "FAILED"}

ERROR_MESSAGE_MAX_LENGTH = 1000


@dataclass(frozen=True)
class FetchSummary:
    source_id: int
    mode: str
    fetched_count: int
    parsed_count: int
    error_count: int
    status: str


@dataclass(frozen=True)
class DueSourceSummary:
    source_id: int
    status: str
    parsed_count: int
    error_count: int


@dataclass
class DueRunResult:
    processed_sources: int = 0
    summaries: list[DueSourceSummary] = field(default_factory=list)


def _error_message(exc: Exception) -> str:
    return (str(exc) or exc.__class__.__name__)[:ERROR_MESSAGE_MAX_LENGTH]


def log_ingest_run(
    db: Session,
    source_id: int | None,
    mode: str,
    status: str,
    fetched_count: int,
    parsed_count: int,
    error_count: int,
    message: str,
    started_at: datetime | None = None,
) -> IngestRun:
    """Append a run log row. Flushes, does not commit."""
    finished_at = utcnow()
    run = IngestRun(
        source_id=source_id,
        mode=mode,
        status=status,
        fetched_count=fetched_count,
        parsed_count=parsed_count,
        error_count=error_count,
        log_message=message,
        started_at=started_at or finished_at,
        finished_at=finished_at,
    )
    db.add(run)
    db.flush()
    return run


def _record_source_error(db: Session, source_id: int, message: str) -> None:
    source = db.get(SourceModel, source_id)
    if source is not None:
        source.last_error_at = utcnow()
        source.last_error_message = message


def run_source_fetch(
    db: Session,
    source_id: int,
    mode: str = "MANUAL",
    http=None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> FetchSummary:
    """
    Fetch one source and ingest everything it returns. Commits.

    Raises:
        SourceNotFoundError: unknown source id
        SourceFetchError / SourceConfigError: the source could not be fetched at all
    """
    settings = settings or get_settings()
    source = db.get(SourceModel, source_id)
    if source is None:
        raise SourceNotFoundError(f"Source {source_id} not found")

    if not source.enabled:
        return FetchSummary(source_id, mode, 0, 0, 0, "SUCCESS")

    started_at = utcnow()
    own_http = http is None
    if own_http:
        http = build_http_session(settings)

    try:
        candidates = fetch_raw_candidates(source, http, settings)
    except Exception as e:
        db.rollback()
        message = _error_message(e)
        logger.warning("Source %s fetch failed: %s", source_id, message)
        _record_source_error(db, source_id, message)
        log_ingest_run(db, source_id, mode, "FAILED", 0, 0, 1, message, started_at)
        db.commit()
        if isinstance(e, IngestError):
            raise
        raise SourceFetchError(message) from e
    finally:
        if own_http:
            http.close()

    fetched_count = len(candidates)
    parsed_count = 0
    error_count = 0

    for candidate in candidates:
        try:
            upserted = upsert_raw_notice(db, source_id, candidate)
            db.commit()
            if not upserted.changed:
                continue

            raw_notice = db.get(RawNotice, upserted.raw_notice_id)
            upsert_event_from_raw(db, source, raw_notice, now=now, default_timezone=settings.TIMEZONE)
            db.commit()
            parsed_count += 1
        except Exception as e:
            db.rollback()
            error_count += 1
            message = _error_message(e)
            logger.exception("Source %s: failed to ingest %s", source_id, candidate.url)
            set_raw_notice_status(db, source_id, candidate.url, "ERROR")
            _record_source_error(db, source_id, message)
            db.commit()

    status = "PARTIAL" if error_count > 0 else "SUCCESS"
    source = db.get(SourceModel, source_id)
    source.last_success_at = utcnow()
    source.last_error_message = None
    log_ingest_run(
        db, source_id, mode, status, fetched_count, parsed_count, error_count,
        f"Fetched {fetched_count}, parsed {parsed_count}, errors {error_count}",
        started_at,
    )
    db.commit()

    logger.info(
        "Source %s (%s): fetched=%s parsed=%s errors=%s",
        source_id, mode, fetched_count, parsed_count, error_count,
    )
    return FetchSummary(source_id, mode, fetched_count, parsed_count, error_count, status)


def list_due_sources(db: Session, limit: int = 10, now: datetime | None = None) -> list[SourceModel]:
    """Enabled sources never fetched successfully or whose interval has elapsed, oldest first."""
    now = as_utc(now) or utcnow()
    sources = db.scalars(
        select(SourceModel)
        .where(SourceModel.enabled.is_(True))
        .order_by(SourceModel.last_success_at.asc().nulls_first(), SourceModel.id)
    )

    due = []
    for source in sources:
        last_success = as_utc(source.last_success_at)
        if last_success is None or last_success + timedelta(minutes=source.fetch_interval_minutes) <= now:
            due.append(source)
            if len(due) >= limit:
                break
    return due


def _run_scheduled_fetch(
    session_factory: sessionmaker,
    source_id: int,
    settings: Settings,
    now: datetime | None,
) -> DueSourceSummary:
    db = session_factory()
    http = build_http_session(settings)
    try:
        summary = run_source_fetch(db, source_id, "SCHEDULED", http=http, settings=settings, now=now)
        return DueSourceSummary(summary.source_id, summary.status, summary.parsed_count, summary.error_count)
    except IngestError as e:
        logger.warning("Scheduled fetch of source %s failed: %s", source_id, e)
        return DueSourceSummary(source_id, "FAILED", 0, 1)
    except Exception:
        logger.exception("Scheduled fetch of source %s crashed", source_id)
        return DueSourceSummary(source_id, "FAILED", 0, 1)
    finally:
        http.close()
        db.close()


def run_due_source_fetches(
    session_factory: sessionmaker,
    limit: int | None = None,
    max_workers: int = 1,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> DueRunResult:
    """
    Fetch every due source.

    Each source gets its own session and HTTP session; with max_workers > 1
    sources are fetched in parallel threads. A failing source is reported as
    FAILED and never stops the others.
    """
    settings = settings or get_settings()
    limit = limit or settings.INGEST_DUE_LIMIT

    db = session_factory()
    try:
        source_ids = [s.id for s in list_due_sources(db, limit=limit, now=now)]
    finally:
        db.close()

    if not source_ids:
        return DueRunResult()

    def run(source_id: int) -> DueSourceSummary:
        return _run_scheduled_fetch(session_factory, source_id, settings, now)

    if max_workers > 1 and len(source_ids) > 1:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(source_ids))) as executor:
            summaries = list(executor.map(run, source_ids))
    else:
        summaries = [run(source_id) for source_id in source_ids]

    return DueRunResult(processed_sources=len(summaries), summaries=summaries)


def reparse_raw_notice(db: Session, raw_notice_id: int, now: datetime | None = None) -> EventUpsertResult:
    """
    Parse a stored raw notice again (e.g. after a parser change). Commits.

    Raises:
        RawNoticeNotFoundError: unknown raw notice id
        SourceNotFoundError: the raw notice's source is gone
    """
    raw_notice = db.get(RawNotice, raw_notice_id)
    if raw_notice is None:
        raise RawNoticeNotFoundError(f"Raw notice {raw_notice_id} not found")

    source = db.get(SourceModel, raw_notice.source_id)
    if source is None:
        raise SourceNotFoundError(f"Source for raw notice {raw_notice_id} not found")

    started_at = utcnow()
    source_id = source.id
    try:
        result = upsert_event_from_raw(db, source, raw_notice, now=now)
    except Exception as e:
        db.rollback()
        message = _error_message(e)
        logger.exception("Reparse of raw notice %s failed", raw_notice_id)
        raw_notice = db.get(RawNotice, raw_notice_id)
        raw_notice.status = "ERROR"
        log_ingest_run(db, source_id, "REPARSE", "FAILED", 1, 0, 1, message, started_at)
        db.commit()
        raise

    log_ingest_run(
        db, source_id, "REPARSE", "SUCCESS", 1, 1, 0,
        f"Reparsed raw notice {raw_notice_id}", started_at,
    )
    db.commit()
    return result


def list_ingest_runs(db: Session, source_id: int | None = None, limit: int = 50) -> list[IngestRun]:
    stmt = select(IngestRun).order_by(IngestRun.started_at.desc(), IngestRun.id.desc()).limit(limit)
    if source_id is not None:
        stmt = stmt.where(IngestRun.source_id == source_id)
    return list(db.scalars(stmt))


if __name__ == "__main__":
    import argparse

    from noticehub.infrastructure.db.session import create_db_engine, create_session_factory

    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Run notice ingestion once")
    parser.add_argument("--source", type=int, help="fetch a single source (MANUAL mode)")
    args = parser.parse_args()

    settings = get_settings()
    SessionLocal = create_session_factory(create_db_engine(settings))

    if args.source:
        session = SessionLocal()
        try:
            print(run_source_fetch(session, args.source, settings=settings))
        finally:
            session.close()
    else:
        result = run_due_source_fetches(
            SessionLocal, max_workers=settings.INGEST_MAX_WORKERS, settings=settings,
        )
        print(f"processed={result.processed_sources}")
        for summary in result.summaries:
            print(summary)
