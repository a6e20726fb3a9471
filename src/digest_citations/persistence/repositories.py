"""
Table repositories for articles, themes, digests and citations.

Each repository is bound to one executor: pass ``db.executor`` for
autocommit access, or the executor yielded by ``db.transaction()`` to
run inside a transaction. SQL lives here; orchestration lives in
:mod:`digest_citations.persistence.digest_writer`.
"""
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, field_validator

from digest_citations.data_models import Article, CitationRecord, Theme, _to_datetime
from digest_citations.logger import get_logger
from digest_citations.persistence.database_interface import (
    DatabaseInterface,
    DBDeterminismError,
    Executor,
    Repository,
    _parse_json,
    _serialize_datetime,
)

logger = get_logger(__name__)

# SQLite max variable number is 999 by default; batch below that.
SQLITE_BATCH_SIZE = 900

# ==== ROW MODELS ====

class _BaseRowModel(BaseModel):
    """Base model for database rows with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        extra="forbid",
    )


class DigestRow(_BaseRowModel):
    """Row from digests table; JSON columns are kept as serialized text."""

    id: str
    title: str = ""
    summary: str = ""
    tldr_summary: str = ""
    key_moments_json: str = "[]"
    perspectives_json: str = "[]"
    why_it_matters: str = ""
    cluster_id: int | None = None
    processed_date: datetime | None = None
    article_count: int = 0
    metadata_json: str = "{}"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("processed_date", "created_at", "updated_at", mode="before")
    @classmethod
    def to_datetime(cls, d: Any) -> datetime | None:
        """Convert input to a datetime object."""
        return _to_datetime(d)

    @property
    def key_moments(self) -> list:
        return _parse_json(self.key_moments_json) or []

    @property
    def perspectives(self) -> list:
        return _parse_json(self.perspectives_json) or []

    @property
    def metadata(self) -> dict:
        return _parse_json(self.metadata_json) or {}


class DigestArticleRow(_BaseRowModel):
    """Row from digest_articles table."""

    digest_id: str
    article_id: str
    citation_order: int
    added_at: datetime


class DigestThemeRow(_BaseRowModel):
    """Row from digest_themes table."""

    digest_id: str
    theme_id: str
    added_at: datetime

# ==== REPOSITORIES ====

class ArticleRepository(Repository):
    """Article lookup by URL and by ID."""

    READS: ClassVar[set[str]] = {"articles"}
    WRITES: ClassVar[set[str]] = {"articles"}

    def upsert(self, article: Article) -> None:
        """Insert an article or update the existing row with the same ID."""
        self._check_write_access("articles")
        self._execute(
            """INSERT INTO articles (id, url, title, publisher, published_date, theme_id)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   url = excluded.url, title = excluded.title, publisher = excluded.publisher,
                   published_date = excluded.published_date, theme_id = excluded.theme_id""",
            (
                article.id,
                article.url,
                article.title,
                article.publisher,
                _serialize_datetime(article.published_date),
                article.theme_id,
            ),
        )

    def get_by_id(self, article_id: str) -> Article | None:
        self._check_read_access("articles")
        row = self._fetchone("SELECT * FROM articles WHERE id = ?", (article_id,))
        return Article.model_validate(dict(row)) if row else None

    def get_by_url(self, url: str) -> Article | None:
        self._check_read_access("articles")
        row = self._fetchone("SELECT * FROM articles WHERE url = ?", (url,))
        return Article.model_validate(dict(row)) if row else None

    def get_by_ids(self, article_ids: Sequence[str]) -> list[Article]:
        """Return the known articles among ``article_ids``, in the given order."""
        self._check_read_access("articles")
        found: dict[str, Article] = {}
        ids = list(dict.fromkeys(article_ids))
        for i in range(0, len(ids), SQLITE_BATCH_SIZE):
            batch = ids[i:i + SQLITE_BATCH_SIZE]
            placeholders = ",".join("?" for _ in batch)
            rows = self._fetchall(
                f"SELECT * FROM articles WHERE id IN ({placeholders})",  # noqa: S608
                tuple(batch),
            )
            for row in rows:
                article = Article.model_validate(dict(row))
                found[article.id] = article
        return [found[a] for a in ids if a in found]


class ThemeRepository(Repository):
    """Theme lookup by name; a miss is a normal outcome, not an error."""

    READS: ClassVar[set[str]] = {"themes"}
    WRITES: ClassVar[set[str]] = {"themes"}

    def upsert(self, theme: Theme) -> None:
        self._check_write_access("themes")
        self._execute(
            """INSERT INTO themes (id, name, description, enabled) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name, description = excluded.description, enabled = excluded.enabled""",
            (theme.id, theme.name, theme.description, int(theme.enabled)),
        )

    def get_by_id(self, theme_id: str) -> Theme | None:
        self._check_read_access("themes")
        row = self._fetchone("SELECT * FROM themes WHERE id = ?", (theme_id,))
        return Theme.model_validate(dict(row)) if row else None

    def get_by_name(self, name: str) -> Theme | None:
        self._check_read_access("themes")
        row = self._fetchone("SELECT * FROM themes WHERE name = ?", (name,))
        return Theme.model_validate(dict(row)) if row else None

    def list_all(self, enabled_only: bool = False) -> list[Theme]:
        self._check_read_access("themes")
        sql = "SELECT * FROM themes"
        if enabled_only:
            sql += " WHERE enabled = 1"
        rows = self._fetchall(sql + " ORDER BY name ASC")
        return [Theme.model_validate(dict(r)) for r in rows]


class CitationRepository(Repository):
    """Resolved digest citations."""

    READS: ClassVar[set[str]] = {"citations"}
    WRITES: ClassVar[set[str]] = {"citations"}

    def upsert(self, record: CitationRecord) -> None:
        """
        Insert a citation or refresh the existing row with the same ID.

        The ID is derived from ``(digest_id, citation_number, url, occurrence)``;
        an existing row with the same ID but different identity columns means
        the ID derivation changed and raises :class:`DBDeterminismError`.
        ``created_at`` of an existing row is preserved.
        """
        self._check_write_access("citations")
        cursor = self._execute(
            """INSERT INTO citations
               (id, digest_id, article_id, citation_number, url, title, publisher,
                published_date, accessed_date, context, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   article_id = excluded.article_id, title = excluded.title,
                   publisher = excluded.publisher, published_date = excluded.published_date,
                   accessed_date = excluded.accessed_date, context = excluded.context
               WHERE citations.digest_id = excluded.digest_id
                 AND citations.citation_number = excluded.citation_number
                 AND citations.url = excluded.url""",
            (
                record.id,
                record.digest_id,
                record.article_id,
                record.citation_number,
                record.url,
                record.title,
                record.publisher,
                _serialize_datetime(record.published_date),
                _serialize_datetime(record.accessed_date),
                record.context,
                _serialize_datetime(record.created_at),
            ),
        )
        if cursor.rowcount == 0:
            raise DBDeterminismError(
                f"Citation ID {record.id[:16]} already belongs to another digest/number/url."
            )

    def upsert_many(self, records: Iterable[CitationRecord]) -> int:
        count = 0
        for record in records:
            self.upsert(record)
            count += 1
        return count

    def get(self, citation_id: str) -> CitationRecord | None:
        self._check_read_access("citations")
        row = self._fetchone("SELECT * FROM citations WHERE id = ?", (citation_id,))
        return CitationRecord.model_validate(dict(row)) if row else None

    def get_by_digest_id(self, digest_id: str) -> list[CitationRecord]:
        """Citations of a digest ordered by citation number, then insertion order."""
        self._check_read_access("citations")
        rows = self._fetchall(
            "SELECT * FROM citations WHERE digest_id = ? ORDER BY citation_number, rowid",
            (digest_id,),
        )
        return [CitationRecord.model_validate(dict(r)) for r in rows]

    def get_by_article_id(self, article_id: str) -> list[CitationRecord]:
        self._check_read_access("citations")
        rows = self._fetchall(
            "SELECT * FROM citations WHERE article_id = ? ORDER BY created_at, rowid",
            (article_id,),
        )
        return [CitationRecord.model_validate(dict(r)) for r in rows]

    def delete_stale(self, digest_id: str, keep_ids: Iterable[str]) -> int:
        """Delete the digest's citations whose ID is not in ``keep_ids``."""
        self._check_write_access("citations")
        keep = set(keep_ids)
        existing = self._fetchall("SELECT id FROM citations WHERE digest_id = ?", (digest_id,))
        stale = sorted(r["id"] for r in existing if r["id"] not in keep)
        deleted = 0
        for i in range(0, len(stale), SQLITE_BATCH_SIZE):
            batch = stale[i:i + SQLITE_BATCH_SIZE]
            placeholders = ",".join("?" for _ in batch)
            cursor = self._execute(
                f"DELETE FROM citations WHERE id IN ({placeholders})",  # noqa: S608
                tuple(batch),
            )
            deleted += cursor.rowcount
        if deleted:
            logger.debug(f"Removed {deleted} stale citations of digest '{digest_id}'")
        return deleted

    def delete_by_digest_id(self, digest_id: str) -> int:
        self._check_write_access("citations")
        cursor = self._execute("DELETE FROM citations WHERE digest_id = ?", (digest_id,))
        return cursor.rowcount


class DigestRepository(Repository):
    """Digest rows and their article/theme link rows."""

    READS: ClassVar[set[str]] = {"digests", "digest_articles", "digest_themes", "articles"}
    WRITES: ClassVar[set[str]] = {"digests", "digest_articles", "digest_themes"}

    def upsert(self, row: DigestRow, now: datetime) -> None:
        """Insert the digest row or overwrite it, keeping the original ``created_at``."""
        self._check_write_access("digests")
        self._execute(
            """INSERT INTO digests
               (id, title, summary, tldr_summary, key_moments_json, perspectives_json,
                why_it_matters, cluster_id, processed_date, article_count, metadata_json,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   title = excluded.title, summary = excluded.summary,
                   tldr_summary = excluded.tldr_summary,
                   key_moments_json = excluded.key_moments_json,
                   perspectives_json = excluded.perspectives_json,
                   why_it_matters = excluded.why_it_matters, cluster_id = excluded.cluster_id,
                   processed_date = excluded.processed_date,
                   article_count = excluded.article_count,
                   metadata_json = excluded.metadata_json, updated_at = excluded.updated_at""",
            (
                row.id,
                row.title,
                row.summary,
                row.tldr_summary,
                row.key_moments_json,
                row.perspectives_json,
                row.why_it_matters,
                row.cluster_id,
                _serialize_datetime(row.processed_date),
                row.article_count,
                row.metadata_json,
                now.isoformat(),
                now.isoformat(),
            ),
        )

    def get(self, digest_id: str) -> DigestRow | None:
        self._check_read_access("digests")
        row = self._fetchone("SELECT * FROM digests WHERE id = ?", (digest_id,))
        return DigestRow.model_validate(dict(row)) if row else None

    def delete(self, digest_id: str) -> bool:
        """Delete a digest; link and citation rows go with it (ON DELETE CASCADE)."""
        self._check_write_access("digests")
        cursor = self._execute("DELETE FROM digests WHERE id = ?", (digest_id,))
        return cursor.rowcount > 0

    def delete_article_links(self, digest_id: str) -> int:
        self._check_write_access("digest_articles")
        return self._execute("DELETE FROM digest_articles WHERE digest_id = ?", (digest_id,)).rowcount

    def insert_article_link(self, digest_id: str, article_id: str, citation_order: int, added_at: datetime) -> bool:
        """Link an article at ``citation_order``; returns False when the pair already exists."""
        self._check_write_access("digest_articles")
        cursor = self._execute(
            """INSERT INTO digest_articles (digest_id, article_id, citation_order, added_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(digest_id, article_id) DO NOTHING""",
            (digest_id, article_id, citation_order, added_at.isoformat()),
        )
        return cursor.rowcount == 1

    def get_article_links(self, digest_id: str) -> list[DigestArticleRow]:
        self._check_read_access("digest_articles")
        rows = self._fetchall(
            "SELECT * FROM digest_articles WHERE digest_id = ? ORDER BY citation_order",
            (digest_id,),
        )
        return [DigestArticleRow.model_validate(dict(r)) for r in rows]

    def get_articles(self, digest_id: str) -> list[Article]:
        """Articles of a digest in citation order."""
        self._check_read_access("digest_articles")
        self._check_read_access("articles")
        rows = self._fetchall(
            """SELECT a.* FROM digest_articles da
               JOIN articles a ON a.id = da.article_id
               WHERE da.digest_id = ?
               ORDER BY da.citation_order""",
            (digest_id,),
        )
        return [Article.model_validate(dict(r)) for r in rows]

    def delete_theme_links(self, digest_id: str) -> int:
        self._check_write_access("digest_themes")
        return self._execute("DELETE FROM digest_themes WHERE digest_id = ?", (digest_id,)).rowcount

    def insert_theme_link(self, digest_id: str, theme_id: str, added_at: datetime) -> bool:
        self._check_write_access("digest_themes")
        cursor = self._execute(
            """INSERT INTO digest_themes (digest_id, theme_id, added_at)
               VALUES (?, ?, ?)
               ON CONFLICT(digest_id, theme_id) DO NOTHING""",
            (digest_id, theme_id, added_at.isoformat()),
        )
        return cursor.rowcount == 1

    def get_theme_links(self, digest_id: str) -> list[DigestThemeRow]:
        self._check_read_access("digest_themes")
        rows = self._fetchall(
            "SELECT * FROM digest_themes WHERE digest_id = ? ORDER BY rowid",
            (digest_id,),
        )
        return [DigestThemeRow.model_validate(dict(r)) for r in rows]


class DigestDatabase(DatabaseInterface):
    """SQLite database for digests with repository factories bound to the current executor."""

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 30000) -> None:
        """Initialize a DigestDatabase."""
        super().__init__(db_path, busy_timeout_ms)

    def articles(self, executor: Executor | None = None) -> ArticleRepository:
        return ArticleRepository(executor or self.executor)

    def themes(self, executor: Executor | None = None) -> ThemeRepository:
        return ThemeRepository(executor or self.executor)

    def citations(self, executor: Executor | None = None) -> CitationRepository:
        return CitationRepository(executor or self.executor)

    def digests(self, executor: Executor | None = None) -> DigestRepository:
        return DigestRepository(executor or self.executor)
