"""
Notice parser: raw title/body -> structured event draft, plus event identity.

Confidence is additive:
    0.35 base
  + type score        (PICKUP/MAINTENANCE .25, UPDATE .22, CAMPAIGN .20, EVENT .10)
  + date range score  (0 .. .35, see text_extraction.extract_date_range)
  + 0.10 when the summary is longer than 20 characters
capped at 1.0. Drafts at or above PUBLIC_CONFIDENCE_THRESHOLD are PUBLIC,
everything else waits for review.
"""
import hashlib
from dataclasses import dataclass
from datetime import datetime

from noticehub.domain.text_extraction import (
    normalize_text, summarize, slugify, extract_date_range, detect_event_type,
)
from noticehub.utils.timeutils import isoformat_z

PARSER_VERSION = "v1"

VISIBILITIES = {"PUBLIC", "NEED_REVIEW", "HIDDEN"}
PUBLIC_CONFIDENCE_THRESHOLD = 0.65

BASE_CONFIDENCE = 0.35
SUMMARY_BONUS = 0.10
SUMMARY_BONUS_MIN_LENGTH = 20
SUMMARY_MAX_LENGTH = 220


@dataclass(frozen=True)
class ParsedEventDraft:
    type: str
    title: str
    summary: str
    start_at_utc: datetime | None
    end_at_utc: datetime | None
    confidence: float
    visibility: str


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def content_hash(title: str, content_text: str | None) -> str:
    """Identity of a raw notice's content: sha256 of normalized title + body."""
    return sha256_hex(normalize_text(f"{title}\n{content_text or ''}"))


def to_visibility(confidence: float) -> str:
    return "PUBLIC" if confidence >= PUBLIC_CONFIDENCE_THRESHOLD else "NEED_REVIEW"


def parse_notice(title: str, content_text: str | None, tz_name: str) -> ParsedEventDraft:
    content_text = content_text or ""
    merged = f"{title}\n{content_text}"

    event_type, type_score = detect_event_type(merged)
    date_range = extract_date_range(merged, tz_name)
    summary = summarize(content_text or title, SUMMARY_MAX_LENGTH)

    bonus = SUMMARY_BONUS if len(summary) > SUMMARY_BONUS_MIN_LENGTH else 0.0
    # rounded so float noise cannot push a draft across the visibility threshold
    confidence = round(min(1.0, BASE_CONFIDENCE + type_score + date_range.score + bonus), 4)

    return ParsedEventDraft(
        type=event_type,
        title=normalize_text(title),
        summary=summary,
        start_at_utc=date_range.start_at_utc,
        end_at_utc=date_range.end_at_utc,
        confidence=confidence,
        visibility=to_visibility(confidence),
    )


def canonical_event_key(
    region_id: int,
    event_type: str,
    title: str,
    start_at_utc: datetime | None,
    end_at_utc: datetime | None,
) -> str:
    """
    Deterministic identity of a logical notice.

    Format: {region}-{type}-{slug}-{12 hex of sha256(region:TYPE:slug:start:end)}
    """
    slug = slugify(title)
    base = ":".join([
        str(region_id),
        event_type,
        slug,
        isoformat_z(start_at_utc) or "na",
        isoformat_z(end_at_utc) or "na",
    ])
    return f"{region_id}-{event_type.lower()}-{slug}-{sha256_hex(base)[:12]}"
