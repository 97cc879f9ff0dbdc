"""Canonical markdown rendering of a paper record."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PaperDocument:
    title: str
    authors: Sequence[str]
    date: str
    version: int
    doi: str
    category: str
    abstract: str | None = None
    summary: str | None = None
    keywords: Sequence[str] = ()


def to_markdown(doc: PaperDocument) -> str:
    """Render the document; optional sections are omitted when empty."""
    lines: list[str] = [f"# {doc.title}", ""]

    if doc.authors:
        lines.append(f"**Authors:** {', '.join(doc.authors)}")
        lines.append("")

    lines.append(f"**Date:** {doc.date}")
    lines.append(f"**Version:** {doc.version}")
    lines.append(f"**DOI:** {doc.doi}")
    lines.append(f"**Category:** {doc.category}")
    lines.append("")

    if doc.abstract:
        lines.extend(["## Abstract", doc.abstract, ""])

    if doc.summary:
        lines.extend(["## AI Summary", doc.summary, ""])

    if doc.keywords:
        lines.extend(["## Keywords", ", ".join(doc.keywords)])

    return "\n".join(lines)
