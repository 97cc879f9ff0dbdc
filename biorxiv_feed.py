"""bioRxiv `details` feed client."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import Any

import requests

from errors import FeedError
from models import FeedPage, Paper

DEFAULT_API_URL = "https://api.biorxiv.org/details/biorxiv"
DEFAULT_CATEGORY = "plant_biology"
REQUEST_TIMEOUT_SECONDS = 30
PAGE_SIZE = 100

LOGGER = logging.getLogger(__name__)


def feed_category() -> str:
    """Category filter sent to the feed."""
    return os.getenv("BIORXIV_CATEGORY", DEFAULT_CATEGORY)


class BiorxivFeed:
    """Fetches single pages of papers posted in a date interval."""

    def __init__(self, base_url: str | None = None, category: str | None = None) -> None:
        self.base_url = (base_url or os.getenv("BIORXIV_API_URL", DEFAULT_API_URL)).rstrip("/")
        self.category = category or feed_category()

    def fetch(self, interval_start: datetime, interval_end: datetime, cursor: int = 0) -> FeedPage:
        """Fetch one page (at most PAGE_SIZE records) starting at `cursor`.

        Raises FeedError on HTTP, shape, status or parse failures. There is
        no retry here; the caller decides whether a failed page aborts.
        """
        url = f"{self.base_url}/{_format_date(interval_start)}/{_format_date(interval_end)}/{cursor}"

        try:
            response = requests.get(
                url,
                params={"category": self.category},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise FeedError("Failed to fetch papers from BioRxiv", details=exc) from exc

        if not response.ok:
            raise FeedError(
                f"BioRxiv API error: {response.status_code} {response.reason}",
                details=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise FeedError("Failed to fetch papers from BioRxiv", details=exc) from exc

        if not _is_valid_payload(payload):
            raise FeedError("Invalid response from BioRxiv API", details=payload)

        message = payload["messages"][0]
        if message["status"] != "ok":
            raise FeedError(
                f"BioRxiv API returned non-ok status: {message['status']}",
                details=message,
            )

        try:
            papers = [_normalize_paper(item) for item in payload["collection"]]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise FeedError("Failed to fetch papers from BioRxiv", details=exc) from exc

        total = _as_int(message.get("total"), default=0)
        LOGGER.info(
            "bioRxiv fetch: interval=%s..%s cursor=%s page_count=%s total=%s",
            _format_date(interval_start),
            _format_date(interval_end),
            cursor,
            len(papers),
            total,
        )
        return FeedPage(papers=papers, total=total)


def _is_valid_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        return False
    if not isinstance(messages[0], dict) or not isinstance(messages[0].get("status"), str):
        return False
    return isinstance(payload.get("collection"), list)


def _normalize_paper(raw: dict[str, Any]) -> Paper:
    authors = tuple(a.strip() for a in str(raw.get("authors") or "").split(";") if a.strip())
    return Paper(
        doi=raw["doi"],
        title=raw["title"],
        authors=authors,
        date=_parse_date(raw["date"]),
        version=_as_int(raw.get("version"), default=1) or 1,
        type=raw.get("type") or "",
        abstract=raw.get("abstract") or "",
    )


def _parse_date(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _format_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%d")


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
