"""
Citation marker parsing for digest markdown.

Two URL-bearing dialects are recognised, ``[[N]](URL)`` and ``[N](URL)``.
Bare markers (``[[N]]``, ``[N]``) carry no URL; they are only visible to
:meth:`CitationParser.parse_citation_numbers`, which is used for
completeness auditing. The parser knows nothing about articles.
"""
import logging
import re

from digest_citations.data_models import CitationReference
from digest_citations.logger import get_logger


# Longer digit runs are not citation markers and never reach int().
MAX_NUMBER_DIGITS = 9
NUMBER_RE = rf"\d{{1,{MAX_NUMBER_DIGITS}}}"

# Alternation order matters: at a given position the double-bracket form must win.
URL_CITATION_PATTERN = re.compile(
    rf"\[\[(?P<double>{NUMBER_RE})\]\]\((?P<double_url>[^)]+)\)"
    rf"|\[(?P<single>{NUMBER_RE})\]\((?P<single_url>[^)]+)\)"
)
NUMBER_PATTERN = re.compile(rf"\[\[(?P<double>{NUMBER_RE})\]\]|\[(?P<single>{NUMBER_RE})\]")

DEFAULT_CONTEXT_WINDOW = 100
MIN_CONTEXT_LENGTH = 50
# A sentence boundary this close to a window edge is used to trim the context.
SENTENCE_SEARCH = 50


def format_citation_number(number: int) -> str:
    """Render a citation number canonically, e.g. ``1 -> "[1]"``."""
    return f"[{number}]"


class CitationParser:
    """Extracts citation occurrences from markdown text."""

    def __init__(self, logger: logging.Logger | None = None, context_window: int = DEFAULT_CONTEXT_WINDOW) -> None:
        """
        Initialize the parser.

        :param logger: Logger to report through, defaults to the module logger.
        :param context_window: Characters captured on each side of a marker.
        """
        if context_window < MIN_CONTEXT_LENGTH:
            raise ValueError(
                f"context_window must be at least {MIN_CONTEXT_LENGTH}, got {context_window}"
            )
        self._logger = logger if logger is not None else get_logger(__name__)
        self._context_window = context_window

    def extract_citations(self, text: str) -> list[CitationReference]:
        """
        Return one reference per URL-bearing marker, in left-to-right order.

        Occurrences are not deduplicated: a number cited twice yields two
        references, each with its own surrounding context.
        """
        if not text:
            return []
        references: list[CitationReference] = []
        for match in URL_CITATION_PATTERN.finditer(text):
            raw_number = match.group("double") or match.group("single")
            url = match.group("double_url") if match.group("double") else match.group("single_url")
            number = int(raw_number)
            if number < 1:
                self._logger.debug("Ignoring citation marker with non-positive number: %s", match.group(0))
                continue
            references.append(CitationReference(
                number=number,
                url=url.strip(),
                context=self._extract_context(text, match.start(), match.end()),
            ))
        self._logger.debug("Extracted %d citation references", len(references))
        return references

    def parse_citation_numbers(self, text: str) -> list[int]:
        """
        Return every cited number, with or without URL, deduplicated in first-seen order.

        Example: ``"Evidence from [[1]], [[1]], and [[2]]" -> [1, 2]``.
        """
        if not text:
            return []
        numbers: list[int] = []
        seen: set[int] = set()
        for match in NUMBER_PATTERN.finditer(text):
            number = int(match.group("double") or match.group("single"))
            if number > 0 and number not in seen:
                seen.add(number)
                numbers.append(number)
        return numbers

    def count_citations(self, text: str) -> int:
        """Count URL-bearing citation occurrences."""
        return len(self.extract_citations(text))

    @staticmethod
    def format_citation_number(number: int) -> str:
        """Render a citation number canonically, e.g. ``1 -> "[1]"``."""
        return format_citation_number(number)

    def _extract_context(self, text: str, start: int, end: int) -> str:
        """
        Return the text around ``text[start:end]``, trimmed to sentence boundaries.

        Trimming is skipped when it would leave less than ``MIN_CONTEXT_LENGTH``
        characters; the marker itself is always kept.
        """
        window_start = max(0, start - self._context_window)
        window_end = min(len(text), end + self._context_window)
        window = text[window_start:window_end]
        marker_start = start - window_start
        marker_end = end - window_start

        lead = 0
        if window_start > 0:
            idx = window.find(". ", 0, marker_start)
            if 0 <= idx < SENTENCE_SEARCH:
                lead = idx + 2

        tail = len(window)
        if window_end < len(text):
            idx = window.rfind(". ", marker_end)
            if idx != -1 and idx > len(window) - SENTENCE_SEARCH:
                tail = idx + 1

        if tail - lead < MIN_CONTEXT_LENGTH:
            lead, tail = 0, len(window)
        return window[lead:tail].strip()
