"""
Source collector: fetch a source over HTTP and turn it into raw candidates.

RSS feeds go through feedparser, HTML list pages through BeautifulSoup CSS
selectors. Nothing is persisted here; see raw_notices.upsert_raw_notice.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urljoin

import feedparser
import requests
from bs4 import BeautifulSoup

from noticehub.config import Settings
from noticehub.domain.errors import SourceFetchError, SourceConfigError
from noticehub.domain.source_config import (
    HTML_SOURCE_TYPES, HtmlSourceConfig, HtmlPayload, RssPayload, parse_source_config,
)
from noticehub.domain.text_extraction import (
    charset_from_content_type, decode_body, normalize_text, strip_html,
)

logger = logging.getLogger(__name__)

RSS_MAX_ENTRIES = 50
HTML_MAX_ITEMS = 30
UNTITLED_NOTICE = "Untitled notice"

ACCEPT_HEADER = "text/html,application/rss+xml,application/xml;q=0.9,*/*;q=0.8"


@dataclass
class RawCandidate:
    url: str
    title: str
    published_at: datetime | None
    content_text: str
    raw_payload: dict = field(default_factory=dict)


def build_http_session(settings: Settings) -> requests.Session:
    """One session per worker; requests.Session is not shared across threads."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": settings.HTTP_USER_AGENT,
        "Accept": ACCEPT_HEADER,
    })
    return session


# ============================================================================
# HTTP
# ============================================================================


def fetch_bytes(http: requests.Session, url: str, timeout: float) -> tuple[bytes, str | None]:
    """
    GET a URL and return (body, content-type header).

    Raises:
        SourceFetchError: network error, timeout or non-2xx status
    """
    try:
        resp = http.get(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        raise SourceFetchError(f"Request to {url} failed: {e}") from e

    if not 200 <= resp.status_code < 300:
        raise SourceFetchError(f"Fetch of {url} failed with status {resp.status_code}")

    return resp.content, resp.headers.get("Content-Type")


def fetch_text(http: requests.Session, url: str, timeout: float) -> str:
    body, content_type = fetch_bytes(http, url, timeout)
    return decode_body(body, charset_from_content_type(content_type))


# ============================================================================
# RSS
# ============================================================================


def _struct_to_utc(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime(*value[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _rss_entry_text(entry) -> str:
    summary = entry.get("summary")
    if summary:
        return strip_html(summary)
    content = entry.get("content") or []
    if content and content[0].get("value"):
        return strip_html(content[0]["value"])
    return normalize_text(entry.get("title") or "")


def fetch_rss_entries(source, http: requests.Session, settings: Settings) -> list[RawCandidate]:
    list_url = source.list_url or source.base_url
    body, content_type = fetch_bytes(http, list_url, settings.LIST_FETCH_TIMEOUT_SECONDS)

    feed = feedparser.parse(body, response_headers={"content-type": content_type or ""})
    if feed.bozo and not feed.entries:
        raise SourceFetchError(f"Feed at {list_url} could not be parsed: {feed.get('bozo_exception')}")

    candidates = []
    for entry in feed.entries[:RSS_MAX_ENTRIES]:
        url = entry.get("link") or entry.get("id")
        if not url:
            continue

        payload = RssPayload(
            guid=entry.get("id"),
            categories=[tag.get("term") for tag in entry.get("tags", []) if tag.get("term")],
        )
        candidates.append(RawCandidate(
            url=url,
            title=normalize_text(entry.get("title") or "") or UNTITLED_NOTICE,
            published_at=_struct_to_utc(entry.get("published_parsed") or entry.get("updated_parsed")),
            content_text=_rss_entry_text(entry),
            raw_payload=payload.to_json(),
        ))

    return candidates


# ============================================================================
# HTML list pages
# ============================================================================


def _first_text(node, selector: str) -> str:
    if not selector:
        return ""
    found = node.select_one(selector)
    return found.get_text(" ", strip=True) if found else ""


def _item_link(node, config: HtmlSourceConfig) -> str | None:
    if config.link_selector:
        found = node.select_one(config.link_selector)
        return found.get("href") if found else None
    if node.get("href"):
        return node.get("href")
    anchor = node.find("a", href=True)
    return anchor.get("href") if anchor else None


def _fetch_detail_text(http: requests.Session, url: str, selector: str, settings: Settings) -> str:
    """Detail body text, or "" when the page cannot be fetched or has no match."""
    try:
        html = fetch_text(http, url, settings.DETAIL_FETCH_TIMEOUT_SECONDS)
    except SourceFetchError as e:
        logger.warning("Detail fetch skipped for %s: %s", url, e)
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return _first_text(soup, selector)


def fetch_html_entries(source, http: requests.Session, settings: Settings) -> list[RawCandidate]:
    config = parse_source_config(source.type, source.config_json)
    list_url = source.list_url or source.base_url

    html = fetch_text(http, list_url, settings.LIST_FETCH_TIMEOUT_SECONDS)
    soup = BeautifulSoup(html, "html.parser")

    nodes = soup.select(config.item_selector)
    if not nodes:
        raise SourceConfigError(
            f"Item selector {config.item_selector!r} matched nothing on {list_url}"
        )

    candidates = []
    for node in nodes[:HTML_MAX_ITEMS]:
        if config.title_selector:
            title = _first_text(node, config.title_selector)
        else:
            title = node.get_text(" ", strip=True)
        title = normalize_text(title)
        link = _item_link(node, config)
        if not title or not link:
            continue

        url = urljoin(source.base_url, link.strip())
        date_text = _first_text(node, config.date_selector)
        content_text = normalize_text(f"{title} {date_text}")

        if config.detail_selector:
            detail = _fetch_detail_text(http, url, config.detail_selector, settings)
            if detail:
                content_text = normalize_text(f"{content_text} {detail}")

        candidates.append(RawCandidate(
            url=url,
            title=title,
            published_at=None,
            content_text=content_text,
            raw_payload=HtmlPayload(extracted_date_text=date_text, source_type=source.type).to_json(),
        ))

    return candidates


def fetch_raw_candidates(source, http: requests.Session, settings: Settings) -> list[RawCandidate]:
    """
    Fetch one source and return its raw candidates.

    Raises:
        SourceFetchError: the list page/feed could not be retrieved
        SourceConfigError: the source type or its selectors cannot be used
    """
    if source.type == "RSS":
        return fetch_rss_entries(source, http, settings)
    if source.type in HTML_SOURCE_TYPES:
        return fetch_html_entries(source, http, settings)
    if source.type == "API":
        raise SourceConfigError("API source type is not implemented yet")
    raise SourceConfigError(f"Unknown source type: {source.type}")
