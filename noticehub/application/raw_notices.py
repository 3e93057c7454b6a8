"""
Raw notice store

Content identity (sha256 of normalized title + body) decides whether a
re-fetched item needs parsing again.
"""
from dataclasses import dataclass

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from noticehub.application.collector import RawCandidate
from noticehub.domain.notice_parser import PARSER_VERSION, content_hash
from noticehub.infrastructure.db.models import RawNotice
from noticehub.infrastructure.db.session import insert_for
from noticehub.utils.timeutils import utcnow


@dataclass(frozen=True)
class RawUpsertResult:
    raw_notice_id: int
    changed: bool


def upsert_raw_notice(db: Session, source_id: int, candidate: RawCandidate) -> RawUpsertResult:
    """
    Insert or refresh a raw notice keyed by (source_id, url). Flushes, does not commit.

    Unchanged content only refreshes fetched_at / title / published_at and
    reports changed=False. New or changed content resets status to NEW.
    """
    now = utcnow()
    digest = content_hash(candidate.title, candidate.content_text)

    existing = db.scalar(
        select(RawNotice).where(RawNotice.source_id == source_id, RawNotice.url == candidate.url)
    )
    if existing is not None and existing.content_hash == digest:
        existing.fetched_at = now
        existing.title = candidate.title
        if candidate.published_at is not None:
            existing.published_at = candidate.published_at
        db.flush()
        return RawUpsertResult(raw_notice_id=existing.id, changed=False)

    values = {
        "source_id": source_id,
        "url": candidate.url,
        "title": candidate.title,
        "published_at": candidate.published_at,
        "fetched_at": now,
        "content_text": candidate.content_text,
        "content_hash": digest,
        "raw_payload": candidate.raw_payload,
        "parser_version": PARSER_VERSION,
        "status": "NEW",
    }
    stmt = insert_for(db, RawNotice).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["source_id", "url"],
        set_={
            "title": stmt.excluded.title,
            "published_at": func.coalesce(stmt.excluded.published_at, RawNotice.published_at),
            "fetched_at": stmt.excluded.fetched_at,
            "content_text": stmt.excluded.content_text,
            "content_hash": stmt.excluded.content_hash,
            "raw_payload": stmt.excluded.raw_payload,
            "parser_version": stmt.excluded.parser_version,
            "status": "NEW",
        },
    ).returning(RawNotice.id)
    raw_notice_id = db.execute(stmt).scalar_one()

    if existing is not None:
        # keep the identity map in step with the row we just overwrote
        db.expire(existing)

    return RawUpsertResult(raw_notice_id=raw_notice_id, changed=True)


def set_raw_notice_status(db: Session, source_id: int, url: str, status: str) -> None:
    raw = db.scalar(select(RawNotice).where(RawNotice.source_id == source_id, RawNotice.url == url))
    if raw is not None:
        raw.status = status
        db.flush()


def list_raw_notices(db: Session, status: str | None = None, limit: int = 100) -> list[RawNotice]:
    """Most recently fetched first, optionally filtered by status."""
    stmt = select(RawNotice).order_by(RawNotice.fetched_at.desc(), RawNotice.id.desc()).limit(limit)
    if status:
        stmt = stmt.where(RawNotice.status == status)
    return list(db.scalars(stmt))
