"""Error taxonomy for the ingestion pipeline and its read paths."""

from __future__ import annotations

from typing import Any


class DigestError(RuntimeError):
    """Base error carrying an optional payload with the raw upstream detail."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class FeedError(DigestError):
    """Network, shape or status failure from the bioRxiv feed. Aborts a run."""


class AnnotationError(DigestError):
    """Per-record enrichment failure. Logged, counted and skipped."""


class StorageConflict(DigestError):
    """Natural-key collision on insert. The record is already stored."""


class OrchestrationError(DigestError):
    """Interval or run-log bookkeeping failure. Aborts a run."""


class TrendError(DigestError):
    """Failure while aggregating trends for a period."""
