"""
Resolution of parsed citation references against a digest's articles.

Numbering is purely positional: ``[[N]]`` refers to ``articles[N - 1]``.
A reference is valid only when its URL matches a known article URL; no
attempt is made to judge whether the cited article supports the claim.
"""
import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict

from digest_citations.citations.formatting import extract_publisher
from digest_citations.citations.parser import NUMBER_RE, CitationParser
from digest_citations.data_models import Article, CitationRecord, CitationReference, compute_sha256_id
from digest_citations.logger import get_logger

# [[N]] not already followed by "(url)"
BARE_CITATION_PATTERN = re.compile(rf"\[\[({NUMBER_RE})\]\](?!\()")


class CitationAudit(BaseModel):
    """Completeness report for the citations of one markdown text."""

    model_config = ConfigDict(frozen=True)

    referenced_numbers: list[int]
    resolved_numbers: list[int]
    out_of_range_numbers: list[int]
    unresolved_urls: list[str]

    @property
    def is_complete(self) -> bool:
        return not self.out_of_range_numbers and not self.unresolved_urls


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CitationResolver:
    """Connects citation references to articles and builds persistable records."""

    def __init__(
        self,
        parser: CitationParser | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the resolver.

        :param parser: Parser used by validation and auditing.
        :param logger: Logger to report through, defaults to the module logger.
        :param clock: Source of ``accessed_date``/``created_at`` timestamps.
        """
        self._logger = logger if logger is not None else get_logger(__name__)
        self._parser = parser if parser is not None else CitationParser(logger=self._logger)
        self._clock = clock or _utc_now

    def inject_citation_urls(self, markdown: str, articles: Sequence[Article]) -> str:
        """
        Rewrite bare ``[[N]]`` markers into ``[[N]](URL)`` using ``articles[N - 1].url``.

        Markers whose number is out of range for ``articles`` are left unchanged.
        Markers that already carry a URL are not touched.
        """
        if not markdown:
            return markdown

        def _replace(match: re.Match[str]) -> str:
            number = int(match.group(1))
            if 1 <= number <= len(articles):
                return f"[[{match.group(1)}]]({articles[number - 1].url})"
            self._logger.debug(
                "Citation [[%d]] out of range for %d articles, leaving unchanged", number, len(articles)
            )
            return match.group(0)

        return BARE_CITATION_PATTERN.sub(_replace, markdown)

    def build_citation_records(
        self,
        digest_id: str,
        references: Sequence[CitationReference],
        articles_by_url: Mapping[str, Article],
    ) -> list[CitationRecord]:
        """
        Build one record per reference whose URL is a key of ``articles_by_url``.

        References with an unknown URL are dropped. Record IDs derive from
        ``(digest_id, number, url, occurrence)`` so that processing the same
        summary twice yields the same IDs.
        """
        now = self._clock()
        occurrences: Counter[tuple[int, str]] = Counter()
        records: list[CitationRecord] = []
        dropped = 0
        for ref in references:
            article = articles_by_url.get(ref.url)
            if article is None:
                dropped += 1
                self._logger.debug(
                    "Dropping citation [%d] for digest %s: no article with URL %s", ref.number, digest_id, ref.url
                )
                continue
            occurrence = occurrences[(ref.number, ref.url)]
            occurrences[(ref.number, ref.url)] += 1
            records.append(CitationRecord(
                id=compute_sha256_id(digest_id, ref.number, ref.url, occurrence),
                digest_id=digest_id,
                article_id=article.id,
                citation_number=ref.number,
                url=ref.url,
                title=article.title,
                publisher=article.publisher or extract_publisher(article.url),
                published_date=article.published_date,
                accessed_date=now,
                context=ref.context,
                created_at=now,
            ))
        if dropped:
            self._logger.info(
                "Digest %s: resolved %d citation(s), dropped %d with unknown URL", digest_id, len(records), dropped
            )
        return records

    def validate_citations(self, markdown: str, articles: Sequence[Article]) -> list[str]:
        """Return one warning per URL-bearing citation that matches no article URL."""
        known_urls = {article.url for article in articles}
        warnings: list[str] = []
        for ref in self._parser.extract_citations(markdown):
            if ref.url not in known_urls:
                warnings.append(f"Citation [{ref.number}] references unknown URL: {ref.url}")
        return warnings

    def audit_citations(self, markdown: str, articles: Sequence[Article]) -> CitationAudit:
        """Report referenced numbers that cannot be resolved positionally or by URL."""
        referenced = self._parser.parse_citation_numbers(markdown)
        resolved = [n for n in referenced if n <= len(articles)]
        out_of_range = [n for n in referenced if n > len(articles)]
        known_urls = {article.url for article in articles}
        unresolved_urls: list[str] = []
        for ref in self._parser.extract_citations(markdown):
            if ref.url not in known_urls and ref.url not in unresolved_urls:
                unresolved_urls.append(ref.url)
        return CitationAudit(
            referenced_numbers=referenced,
            resolved_numbers=resolved,
            out_of_range_numbers=out_of_range,
            unresolved_urls=unresolved_urls,
        )
