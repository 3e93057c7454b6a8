"""
Driver loop: periodic ingest + dispatch tick.

One tick runs "fetch due sources" then "dispatch due notifications", in that
order. APScheduler's max_instances=1 keeps ticks of one driver from
overlapping; several drivers may run side by side (dispatch claims are
exclusive).

Usage:
    python -m noticehub.application.scheduler     # blocking driver process

or in-process with the API (SCHEDULER_ENABLED=true), see noticehub.main.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import sessionmaker

from noticehub.application.dispatch import dispatch_due_notifications
from noticehub.application.ingest import run_due_source_fetches
from noticehub.config import Settings, get_settings

logger = logging.getLogger(__name__)

TICK_JOB_ID = "ingest_dispatch_tick"


def run_tick(session_factory: sessionmaker, settings: Settings) -> None:
    """One driver tick. Errors are logged, never raised."""
    processed = 0
    try:
        ingest = run_due_source_fetches(
            session_factory,
            limit=settings.INGEST_DUE_LIMIT,
            max_workers=settings.INGEST_MAX_WORKERS,
            settings=settings,
        )
        processed = ingest.processed_sources
    except Exception:
        logger.exception("Ingest phase failed")

    db = session_factory()
    try:
        result = dispatch_due_notifications(db, limit=settings.DISPATCH_LIMIT, settings=settings)
        logger.info(
            "Tick: ingest=%d picked=%d sent=%d failed=%d",
            processed, result.picked, result.sent, result.failed,
        )
    except Exception:
        logger.exception("Dispatch phase failed (ingest=%d)", processed)
    finally:
        db.close()


def _add_tick_job(scheduler, session_factory: sessionmaker, settings: Settings) -> None:
    scheduler.add_job(
        run_tick,
        "interval",
        seconds=settings.WORKER_TICK_SECONDS,
        args=[session_factory, settings],
        id=TICK_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


def start_scheduler(session_factory: sessionmaker, settings: Settings) -> BackgroundScheduler:
    """Start the in-process background driver and return it (stop with shutdown_scheduler)."""
    scheduler = BackgroundScheduler(daemon=True)
    _add_tick_job(scheduler, session_factory, settings)
    scheduler.start()
    logger.info("Scheduler started: tick every %ss", settings.WORKER_TICK_SECONDS)
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler | None) -> None:
    """Gracefully stop the scheduler."""
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    from noticehub.infrastructure.db.session import create_db_engine, create_session_factory

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    settings = get_settings()
    SessionLocal = create_session_factory(create_db_engine(settings))

    logger.info("Driver started: tick every %ss", settings.WORKER_TICK_SECONDS)
    run_tick(SessionLocal, settings)

    blocking = BlockingScheduler()
    _add_tick_job(blocking, SessionLocal, settings)
    try:
        blocking.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Driver stopped")
