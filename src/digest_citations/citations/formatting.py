"""Rendering of stored citations in common reference styles."""
from enum import StrEnum
from urllib.parse import urlparse

from digest_citations.data_models import CitationRecord


class CitationStyle(StrEnum):
    """Supported citation styles."""

    simple = "simple"
    apa = "apa"
    mla = "mla"
    chicago = "chicago"


def extract_publisher(url: str) -> str:
    """
    Return the registrable domain of ``url``, e.g. ``blog.example.com -> example.com``.

    Returns an empty string when the URL has no host.
    """
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    host = host.removeprefix("www.")
    parts = host.split(".")
    if len(parts) >= 2:
        return ".".join(parts[-2:])
    return host


def format_citation(record: CitationRecord, style: str = CitationStyle.simple) -> str:
    """Format a citation record; unknown styles fall back to ``simple``."""
    if style == CitationStyle.apa:
        return _format_apa(record)
    if style == CitationStyle.mla:
        return _format_mla(record)
    if style == CitationStyle.chicago:
        return _format_chicago(record)
    return _format_simple(record)


def _format_simple(c: CitationRecord) -> str:
    parts: list[str] = []
    if c.title:
        parts.append(f'"{c.title}"')
    if c.publisher:
        parts.append(c.publisher)
    if c.published_date is not None:
        parts.append(c.published_date.strftime("%Y-%m-%d"))
    parts.append(c.url)
    parts.append(f"(accessed {c.accessed_date.strftime('%Y-%m-%d')})")
    return ". ".join(parts)


def _format_apa(c: CitationRecord) -> str:
    # Publisher (Year). Title. URL
    parts: list[str] = []
    if c.publisher:
        year = f" ({c.published_date.year})" if c.published_date is not None else ""
        parts.append(c.publisher + year)
    if c.title:
        parts.append(c.title)
    parts.append(c.url)
    return ". ".join(parts)


def _format_mla(c: CitationRecord) -> str:
    # "Title." Publisher, Date. URL.
    parts: list[str] = []
    publisher_date: list[str] = []
    if c.publisher:
        publisher_date.append(c.publisher)
    if c.published_date is not None:
        publisher_date.append(f"{c.published_date.day} {c.published_date.strftime('%b')}. {c.published_date.year}")
    if publisher_date:
        parts.append(", ".join(publisher_date))
    parts.append(c.url)
    return _with_quoted_title(c.title, ". ".join(parts) + ".")


def _format_chicago(c: CitationRecord) -> str:
    # "Title." Publisher. Month Day, Year. URL.
    parts: list[str] = []
    if c.publisher:
        parts.append(c.publisher)
    if c.published_date is not None:
        parts.append(f"{c.published_date.strftime('%B')} {c.published_date.day}, {c.published_date.year}")
    parts.append(c.url)
    return _with_quoted_title(c.title, ". ".join(parts) + ".")


def _with_quoted_title(title: str, rest: str) -> str:
    return f'"{title}." {rest}' if title else rest
