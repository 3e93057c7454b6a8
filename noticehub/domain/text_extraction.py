"""
Text extraction helpers for notice bodies.

Pure functions: byte decoding, HTML flattening, whitespace normalization,
date-range extraction from free text and keyword-based event type detection.
Nothing here touches the database or the network.

Date formats recognized (first match wins):
  2026/03/01 10:00 ~ 2026/03/08 11:30   full range
  2026.03.01 10:00 ~ 11:30              same-day range
  2026-03-01 10:00                      single start
"""
import codecs
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup

EVENT_TYPES = {"PICKUP", "UPDATE", "MAINTENANCE", "EVENT", "CAMPAIGN"}

DEFAULT_CHARSET = "utf-8"
CHARSET_SNIFF_BYTES = 4096

_CHARSET_ALIASES = {
    "ks_c_5601-1987": "euc-kr",
    "x-euc-kr": "euc-kr",
}

_CONTENT_TYPE_CHARSET_RE = re.compile(r"charset=([^;]+)", re.IGNORECASE)
_META_CHARSET_RE = re.compile(r"""<meta[^>]+charset=["']?([\w.-]+)""", re.IGNORECASE)

_WHITESPACE_RE = re.compile(r"\s+")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")

# Offsets for the regions operators actually publish in
_FIXED_OFFSETS = {
    "Asia/Seoul": timedelta(hours=9),
    "Asia/Tokyo": timedelta(hours=9),
    "Asia/Shanghai": timedelta(hours=8),
    "Asia/Taipei": timedelta(hours=8),
    "Asia/Hong_Kong": timedelta(hours=8),
    "UTC": timedelta(0),
}

_DATE = r"(\d{4})[./-](\d{1,2})[./-](\d{1,2})\s*(\d{1,2}):(\d{2})"
_RANGE_SEP = r"\s*[~\-–]\s*"
FULL_RANGE_RE = re.compile(_DATE + _RANGE_SEP + _DATE)
SAME_DAY_RANGE_RE = re.compile(_DATE + _RANGE_SEP + r"(\d{1,2}):(\d{2})")
SINGLE_DATE_RE = re.compile(_DATE)

# (type, score, keywords) in priority order
EVENT_TYPE_RULES = (
    ("PICKUP", 0.25, ("pickup", "pick-up", "rate up", "가챠", "픽업", "recruitment", "warp")),
    ("MAINTENANCE", 0.25, ("maintenance", "점검", "maintenance notice", "긴급 점검")),
    ("UPDATE", 0.22, ("update", "patch", "패치", "업데이트", "version", "점검 후 업데이트")),
    ("CAMPAIGN", 0.20, ("campaign", "캠페인", "보너스", "2x", "double drop")),
)
FALLBACK_EVENT_TYPE = ("EVENT", 0.10)


@dataclass(frozen=True)
class DateRange:
    start_at_utc: datetime | None
    end_at_utc: datetime | None
    score: float


# ============================================================================
# Decoding
# ============================================================================


def normalize_charset(name: str | None) -> str | None:
    if not name:
        return None
    cleaned = name.strip().strip("\"'").strip().lower()
    if not cleaned:
        return None
    return _CHARSET_ALIASES.get(cleaned, cleaned)


def charset_from_content_type(header: str | None) -> str | None:
    """Charset parameter of a Content-Type header, normalized."""
    if not header:
        return None
    match = _CONTENT_TYPE_CHARSET_RE.search(header)
    if not match:
        return None
    return normalize_charset(match.group(1))


def sniff_meta_charset(body: bytes) -> str | None:
    head = body[:CHARSET_SNIFF_BYTES].decode("latin-1")
    match = _META_CHARSET_RE.search(head)
    if not match:
        return None
    return normalize_charset(match.group(1))


def _is_known_codec(name: str) -> bool:
    try:
        info = codecs.lookup(name)
    except LookupError:
        return False
    # hex, base64, rot13, zlib ... resolve but are bytes-to-bytes transforms
    return getattr(info, "_is_text_encoding", True)


def decode_body(body: bytes, declared_charset: str | None = None) -> str:
    """
    Decode an HTTP body to text.

    Header charset wins, then a <meta charset> in the first 4 KB, then UTF-8.
    Never raises: unknown charsets fall back to UTF-8 and undecodable bytes
    are replaced.
    """
    charset = normalize_charset(declared_charset) or sniff_meta_charset(body)
    if not charset or not _is_known_codec(charset):
        charset = DEFAULT_CHARSET
    return body.decode(charset, errors="replace")


# ============================================================================
# Text shaping
# ============================================================================


def normalize_text(value: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", value).strip()


def strip_html(value: str) -> str:
    """Drop markup, keep text with block boundaries as spaces."""
    if not value:
        return ""
    soup = BeautifulSoup(value, "html.parser")
    return normalize_text(soup.get_text(" "))


def decode_html_entities(value: str) -> str:
    if not value:
        return ""
    return BeautifulSoup(value, "html.parser").get_text()


def summarize(value: str, max_length: int = 220) -> str:
    normalized = normalize_text(value)
    if len(normalized) <= max_length:
        return normalized
    return normalized[: max_length - 1] + "…"


def slugify(value: str) -> str:
    lowered = _SLUG_STRIP_RE.sub("", value.lower()).strip()
    return _WHITESPACE_RE.sub("-", lowered)[:60]


# ============================================================================
# Dates
# ============================================================================


def timezone_offset(name: str, local: datetime | None = None) -> timedelta:
    """
    UTC offset for a region timezone name.

    Well-known names use fixed offsets. Other IANA names go through zoneinfo
    (DST-aware when `local` is given). Anything unresolvable is UTC.
    """
    if name in _FIXED_OFFSETS:
        return _FIXED_OFFSETS[name]
    try:
        zone = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timedelta(0)
    offset = (local or datetime(2000, 1, 1)).replace(tzinfo=zone).utcoffset()
    return offset or timedelta(0)


def _to_utc(year, month, day, hour, minute, tz_name: str) -> datetime | None:
    try:
        local = datetime(int(year), int(month), int(day), int(hour), int(minute))
    except ValueError:
        return None
    offset = timezone_offset(tz_name, local)
    return local.replace(tzinfo=timezone(offset)).astimezone(timezone.utc)


def extract_date_range(text: str, tz_name: str) -> DateRange:
    source = normalize_text(text)

    match = FULL_RANGE_RE.search(source)
    if match:
        g = match.groups()
        start = _to_utc(*g[0:5], tz_name)
        end = _to_utc(*g[5:10], tz_name)
        return DateRange(start, end, 0.35 if start and end else 0.15)

    match = SAME_DAY_RANGE_RE.search(source)
    if match:
        g = match.groups()
        start = _to_utc(*g[0:5], tz_name)
        end = _to_utc(g[0], g[1], g[2], g[5], g[6], tz_name)
        return DateRange(start, end, 0.30 if start and end else 0.10)

    match = SINGLE_DATE_RE.search(source)
    if match:
        start = _to_utc(*match.groups(), tz_name)
        return DateRange(start, None, 0.15 if start else 0.05)

    return DateRange(None, None, 0.0)


# ============================================================================
# Classification
# ============================================================================


def detect_event_type(text: str) -> tuple[str, float]:
    source = text.lower()
    for event_type, score, keywords in EVENT_TYPE_RULES:
        if any(word in source for word in keywords):
            return event_type, score
    return FALLBACK_EVENT_TYPE
