"""Normalize snapshot payloads into answer text, raw citations and URLs.

Providers return the same answer in several shapes: a bare object, an object
wrapped in a one-element array, or an object nested under ``data``. Each
shape is handled by a small pure rule; rules are tried in order and either
return a candidate or ``None``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from bs4 import BeautifulSoup

URL_PREFIXES = ("http://", "https://")
CITATION_FIELDS = ("citations", "links_attached", "sources", "urls")
CITATION_URL_KEYS = ("url", "source", "link", "href")
IN_PROGRESS_STATUSES = {"running", "starting", "building", "collecting"}

_TEXT_URL_RE = re.compile(r"https?://[^\s)<>\"]+")


class ExtractionState(StrEnum):
    READY = "ready"
    IN_PROGRESS = "in_progress"
    UNRECOGNIZED = "unrecognized"


@dataclass(slots=True)
class ExtractedAnswer:
    answer_text: str
    raw_citations: list[Any] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    answer_field: str = "answer_text"


@dataclass(slots=True)
class Extraction:
    state: ExtractionState
    answer: ExtractedAnswer | None = None
    detail: str = ""

    @property
    def is_ready(self) -> bool:
        return self.state == ExtractionState.READY


# --- Unwrap rules ---


def _first_of_array(value: Any) -> Any | None:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _data_envelope(value: Any) -> Any | None:
    if isinstance(value, dict):
        data = value.get("data")
        if isinstance(data, list) and data:
            return data[0]
    return None


UNWRAP_RULES: tuple[Callable[[Any], Any | None], ...] = (_first_of_array, _data_envelope)


def unwrap_payload(payload: Any) -> Any:
    """Apply each unwrap rule once, in order."""
    value = payload
    for rule in UNWRAP_RULES:
        candidate = rule(value)
        if candidate is not None:
            value = candidate
    return value


# --- Answer rules ---


def _text_field(name: str) -> Callable[[dict[str, Any]], str | None]:
    def rule(obj: dict[str, Any]) -> str | None:
        value = obj.get(name)
        if isinstance(value, str) and value.strip():
            return value
        return None

    rule.__name__ = name
    return rule


def _answer_section_html(obj: dict[str, Any]) -> str | None:
    html = obj.get("answer_section_html")
    if not isinstance(html, str) or not html.strip():
        return None
    stripped = BeautifulSoup(html, "html.parser").get_text().strip()
    return stripped or None


_answer_section_html.__name__ = "answer_section_html"

ANSWER_RULES: tuple[Callable[[dict[str, Any]], str | None], ...] = (
    _text_field("answer_text"),
    _text_field("answer"),
    _text_field("response"),
    _text_field("content"),
    _answer_section_html,
)


def find_answer(obj: dict[str, Any]) -> tuple[str, str] | None:
    """Return ``(answer_text, field_name)`` from the first matching rule."""
    for rule in ANSWER_RULES:
        text = rule(obj)
        if text is not None:
            return text, rule.__name__
    return None


# --- Citations ---


def has_url_prefix(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(URL_PREFIXES)


def citation_array(obj: dict[str, Any]) -> list[Any]:
    for name in CITATION_FIELDS:
        value = obj.get(name)
        if isinstance(value, list):
            return value
    return []


def resolve_citation_url(citation: Any) -> str | None:
    if isinstance(citation, str):
        return citation if has_url_prefix(citation) else None
    if isinstance(citation, dict):
        for key in CITATION_URL_KEYS:
            value = citation.get(key)
            if isinstance(value, str) and value:
                return value if has_url_prefix(value) else None
    return None


def collect_urls(citations: list[Any]) -> list[str]:
    """Resolve citations to http(s) URLs, deduplicated in first-seen order."""
    resolved = (resolve_citation_url(citation) for citation in citations)
    return list(dict.fromkeys(url for url in resolved if url is not None))


def urls_from_text(text: str) -> list[str]:
    return list(dict.fromkeys(_TEXT_URL_RE.findall(text or "")))


# --- Classification ---


def _in_progress_marker(obj: Any) -> str | None:
    if not isinstance(obj, dict):
        return None
    status = obj.get("status")
    if isinstance(status, str) and status.strip().lower() in IN_PROGRESS_STATUSES:
        return f"status={status}"
    message = obj.get("message")
    if isinstance(message, str) and "not ready" in message.lower():
        return f"message={message[:120]}"
    return None


def extract(payload: Any, *, urls_from_answer: bool = True) -> Extraction:
    """Turn a parsed poll payload into an answer or a not-ready classification."""
    obj = unwrap_payload(payload)

    found = find_answer(obj) if isinstance(obj, dict) else None
    if found is None:
        marker = _in_progress_marker(obj)
        if marker is not None:
            return Extraction(state=ExtractionState.IN_PROGRESS, detail=marker)
        if isinstance(obj, dict):
            detail = f"keys={sorted(obj.keys())[:20]}"
        else:
            detail = f"type={type(obj).__name__}"
        return Extraction(state=ExtractionState.UNRECOGNIZED, detail=detail)

    answer_text, answer_field = found
    raw_citations = citation_array(obj)
    urls = collect_urls(raw_citations)
    if not urls and urls_from_answer:
        urls = urls_from_text(answer_text)

    return Extraction(
        state=ExtractionState.READY,
        answer=ExtractedAnswer(
            answer_text=answer_text,
            raw_citations=list(raw_citations),
            urls=urls,
            answer_field=answer_field,
        ),
        detail=f"answer_field={answer_field}",
    )
