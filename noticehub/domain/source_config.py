"""
Typed views over a source's free-form `config_json` and raw payloads.

Config parsing is lenient: unknown keys and non-string values are ignored
and missing keys take defaults, so a half-filled admin form never breaks a
fetch.
"""
from dataclasses import dataclass, field, asdict
from typing import Any

from noticehub.domain.errors import SourceConfigError

SOURCE_TYPES = {"RSS", "HTML_LIST", "HTML_DETAIL", "API"}
HTML_SOURCE_TYPES = {"HTML_LIST", "HTML_DETAIL"}


@dataclass(frozen=True)
class RssSourceConfig:
    timezone: str | None = None


@dataclass(frozen=True)
class HtmlSourceConfig:
    item_selector: str = "a"
    title_selector: str = ""
    link_selector: str = ""
    date_selector: str = ""
    detail_selector: str = ""
    timezone: str | None = None


@dataclass(frozen=True)
class ApiSourceConfig:
    pass


SourceConfig = RssSourceConfig | HtmlSourceConfig | ApiSourceConfig

_HTML_KEYS = {
    "itemSelector": "item_selector",
    "titleSelector": "title_selector",
    "linkSelector": "link_selector",
    "dateSelector": "date_selector",
    "detailSelector": "detail_selector",
    "timezone": "timezone",
}


def _string_value(config: dict, key: str) -> str | None:
    value = config.get(key)
    return value if isinstance(value, str) else None


def parse_source_config(source_type: str, config: dict[str, Any] | None) -> SourceConfig:
    """
    Build the typed config variant for a source type.

    Raises:
        SourceConfigError: unknown source type
    """
    config = config if isinstance(config, dict) else {}

    if source_type == "RSS":
        return RssSourceConfig(timezone=_string_value(config, "timezone") or None)

    if source_type in HTML_SOURCE_TYPES:
        values = {}
        for key, attr in _HTML_KEYS.items():
            value = _string_value(config, key)
            if value is not None:
                values[attr] = value
        # an empty item selector means "use the default", not "match nothing"
        if not values.get("item_selector"):
            values.pop("item_selector", None)
        if not values.get("timezone"):
            values.pop("timezone", None)
        return HtmlSourceConfig(**values)

    if source_type == "API":
        return ApiSourceConfig()

    raise SourceConfigError(f"Unknown source type: {source_type}")


# ============================================================================
# Raw payloads (stored as JSON on raw_notices.raw_payload)
# ============================================================================


@dataclass(frozen=True)
class RssPayload:
    guid: str | None = None
    categories: list[str] = field(default_factory=list)

    def to_json(self) -> dict:
        return {"sourceType": "RSS", **asdict(self)}


@dataclass(frozen=True)
class HtmlPayload:
    extracted_date_text: str = ""
    source_type: str = "HTML_LIST"

    def to_json(self) -> dict:
        return {"sourceType": self.source_type, "extractedDateText": self.extracted_date_text}


RawPayload = RssPayload | HtmlPayload
