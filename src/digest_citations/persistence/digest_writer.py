"""
Atomic persistence of a digest with its article links, theme links and citations.

:meth:`DigestWriter.store_with_relationships` is the only multi-table write
in the package. Its four steps run in a single ``BEGIN IMMEDIATE``
transaction:

1. upsert the digest row,
2. replace the article links (``citation_order`` is the 1-based position
   that ``[[N]]`` markers refer to),
3. replace the theme links (explicit IDs plus the digest's theme names
   resolved by name; unknown names are skipped),
4. upsert the resolved citations and drop the ones no longer produced.

A failure at any step rolls the whole transaction back, so a reader sees
either the previous committed digest or the new one, never a mix.
"""
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol, Sequence

from pydantic import BaseModel, ConfigDict

from digest_citations.citations.parser import CitationParser
from digest_citations.citations.resolver import CitationResolver
from digest_citations.data_models import Article, CitationRecord, Digest, Theme
from digest_citations.logger import get_logger
from digest_citations.persistence.database_interface import DBError, Executor, _serialize_json
from digest_citations.persistence.repositories import DigestDatabase, DigestRow

STEP_BEGIN = "begin transaction"
STEP_INSERT_DIGEST = "insert digest"
STEP_LINK_ARTICLES = "link articles"
STEP_LINK_THEMES = "link themes"
STEP_STORE_CITATIONS = "store citations"
STEP_COMMIT = "commit"


class DigestPayloadError(ValueError):
    """Raised when a digest cannot be serialized for storage."""


class DigestStoreError(DBError):
    """Raised when storing a digest fails; the transaction has been rolled back."""

    def __init__(self, digest_id: str, step: str, cause: object) -> None:
        """Initialize the exception."""
        self.digest_id = digest_id
        self.step = step
        super().__init__(f"Failed to {step} for digest '{digest_id}': {cause}")


class DigestStoreCancelledError(DigestStoreError):
    """Raised when a store is cancelled by the caller before commit."""


class ThemeLookup(Protocol):
    """Resolves a theme name to a theme; ``None`` when the name is unknown."""

    def get_by_name(self, name: str) -> Theme | None:
        ...


class StoreResult(BaseModel):
    """What one call to :meth:`DigestWriter.store_with_relationships` persisted."""

    model_config = ConfigDict(frozen=True)

    digest_id: str
    article_links: int
    theme_links: int
    citations_stored: int
    citations_dropped: int
    citations_removed: int
    skipped_themes: list[str]


class StoredDigest(BaseModel):
    """A persisted digest read back with all of its relations."""

    digest: DigestRow
    articles: list[Article]
    theme_ids: list[str]
    citations: list[CitationRecord]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DigestWriter:
    """Stores digests together with their links and citations as one unit."""

    def __init__(
        self,
        database: DigestDatabase,
        parser: CitationParser | None = None,
        resolver: CitationResolver | None = None,
        theme_lookup: ThemeLookup | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the writer.

        :param database: Open database the digest is written to.
        :param parser: Citation parser, defaults to one sharing ``logger``.
        :param resolver: Citation resolver, defaults to one sharing ``parser``.
        :param theme_lookup: Theme name resolver; defaults to the database's
            theme table, queried inside the write transaction.
        :param logger: Logger to report through, defaults to the module logger.
        :param clock: Source of timestamps.
        """
        self._db = database
        self._logger = logger if logger is not None else get_logger(__name__)
        self._clock = clock or _utc_now
        self._parser = parser if parser is not None else CitationParser(logger=self._logger)
        self._resolver = resolver if resolver is not None else CitationResolver(
            parser=self._parser, logger=self._logger, clock=self._clock,
        )
        self._theme_lookup = theme_lookup

    def store_with_relationships(
        self,
        digest: Digest,
        article_ids: Sequence[str],
        theme_ids: Iterable[str] = (),
        cancel_event: threading.Event | None = None,
    ) -> StoreResult:
        """
        Persist ``digest`` with its article links, theme links and citations atomically.

        :param digest: The generated digest.
        :param article_ids: Article IDs in citation order.
        :param theme_ids: Theme IDs to link in addition to the digest's theme names.
        :param cancel_event: When set, the store aborts at the next step boundary.
        :return: Counts of what was written and what was skipped.
        :raises DigestPayloadError: If the digest cannot be serialized; nothing is written.
        :raises DigestStoreError: If any step fails; nothing is written.
        """
        row = self._build_digest_row(digest)
        references = self._parser.extract_citations(digest.summary)
        articles_by_url = {article.url: article for article in digest.articles}
        records = self._resolver.build_citation_records(digest.id, references, articles_by_url)
        explicit_theme_ids = list(dict.fromkeys(theme_ids))
        now = self._clock()

        step = STEP_BEGIN
        try:
            with self._db.transaction() as tx:
                digests = self._db.digests(tx)

                step = STEP_INSERT_DIGEST
                self._check_cancelled(digest.id, step, cancel_event)
                digests.upsert(row, now)

                step = STEP_LINK_ARTICLES
                self._check_cancelled(digest.id, step, cancel_event)
                digests.delete_article_links(digest.id)
                article_links = 0
                for position, article_id in enumerate(article_ids, start=1):
                    if digests.insert_article_link(digest.id, article_id, position, now):
                        article_links += 1

                step = STEP_LINK_THEMES
                self._check_cancelled(digest.id, step, cancel_event)
                resolved_ids, skipped_themes = self._resolve_theme_ids(digest, explicit_theme_ids, tx)
                digests.delete_theme_links(digest.id)
                theme_links = 0
                for theme_id in resolved_ids:
                    if digests.insert_theme_link(digest.id, theme_id, now):
                        theme_links += 1

                step = STEP_STORE_CITATIONS
                self._check_cancelled(digest.id, step, cancel_event)
                citations = self._db.citations(tx)
                stored = citations.upsert_many(records)
                removed = citations.delete_stale(digest.id, {record.id for record in records})

                step = STEP_COMMIT
                self._check_cancelled(digest.id, step, cancel_event)
        except DigestStoreCancelledError:
            self._logger.warning(f"Store of digest '{digest.id}' cancelled, transaction rolled back")
            raise
        except (DBError, sqlite3.Error) as e:
            self._logger.error(f"Failed to {step} for digest '{digest.id}', transaction rolled back: {e}")
            raise DigestStoreError(digest.id, step, e) from e

        result = StoreResult(
            digest_id=digest.id,
            article_links=article_links,
            theme_links=theme_links,
            citations_stored=stored,
            citations_dropped=len(references) - len(records),
            citations_removed=removed,
            skipped_themes=skipped_themes,
        )
        self._logger.info(
            f"Stored digest '{digest.id}': {result.article_links} articles, {result.theme_links} themes, "
            f"{result.citations_stored} citations ({result.citations_dropped} dropped)"
        )
        return result

    def store_digest(self, digest: Digest, theme_ids: Iterable[str] = ()) -> StoreResult:
        """
        Store a digest using its own article order and the articles' assigned themes.

        Theme IDs are the union of ``theme_ids`` and every ``Article.theme_id``.
        """
        article_ids = [article.id for article in digest.articles]
        all_theme_ids = list(theme_ids) + [a.theme_id for a in digest.articles if a.theme_id]
        return self.store_with_relationships(digest, article_ids, all_theme_ids)

    def get_full(self, digest_id: str) -> StoredDigest | None:
        """Read a digest with its ordered articles, theme IDs and citations from one snapshot."""
        with self._db.transaction(immediate=False) as tx:
            digests = self._db.digests(tx)
            row = digests.get(digest_id)
            if row is None:
                return None
            return StoredDigest(
                digest=row,
                articles=digests.get_articles(digest_id),
                theme_ids=[link.theme_id for link in digests.get_theme_links(digest_id)],
                citations=self._db.citations(tx).get_by_digest_id(digest_id),
            )

    def delete(self, digest_id: str) -> bool:
        """Delete a digest with all of its links and citations."""
        with self._db.transaction() as tx:
            deleted = self._db.digests(tx).delete(digest_id)
        if deleted:
            self._logger.info(f"Deleted digest '{digest_id}'")
        return deleted

    def _build_digest_row(self, digest: Digest) -> DigestRow:
        if not digest.id:
            raise DigestPayloadError("Digest has no id")
        try:
            key_moments_json = _serialize_json(digest.key_moments)
            perspectives_json = _serialize_json(digest.perspectives)
            metadata_json = _serialize_json(digest.metadata)
        except (TypeError, ValueError) as e:
            raise DigestPayloadError(f"Digest '{digest.id}' cannot be serialized: {e}") from e
        return DigestRow(
            id=digest.id,
            title=digest.title,
            summary=digest.summary,
            tldr_summary=digest.tldr_summary,
            key_moments_json=key_moments_json,
            perspectives_json=perspectives_json,
            why_it_matters=digest.why_it_matters,
            cluster_id=digest.cluster_id,
            processed_date=digest.processed_date,
            article_count=digest.article_count,
            metadata_json=metadata_json,
        )

    def _resolve_theme_ids(
        self, digest: Digest, explicit_ids: list[str], tx: Executor,
    ) -> tuple[list[str], list[str]]:
        """Return ``(theme_ids, skipped_names)``; unknown theme names never fail the store."""
        lookup = self._theme_lookup if self._theme_lookup is not None else self._db.themes(tx)
        theme_ids = list(explicit_ids)
        skipped: list[str] = []
        for name in digest.theme_names:
            theme = lookup.get_by_name(name)
            if theme is None:
                self._logger.warning(f"Theme '{name}' not found, digest '{digest.id}' will not be linked to it")
                skipped.append(name)
                continue
            if theme.id not in theme_ids:
                theme_ids.append(theme.id)
        return theme_ids, skipped

    def _check_cancelled(self, digest_id: str, step: str, cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise DigestStoreCancelledError(digest_id, step, "cancelled by caller")
