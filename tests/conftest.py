from datetime import datetime, timezone
from pathlib import Path

import pytest

from digest_citations.data_models import Article, ArticleGroup, Digest, Theme
from digest_citations.persistence.repositories import DigestDatabase

URL1 = "https://example.com/article1"
URL2 = "https://example.com/article2"
URL3 = "https://news.example.org/article3"


class FixedClock:
    """Callable clock whose time can be moved by tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 11, 6, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def articles() -> list[Article]:
    return [
        Article(
            id="a1",
            url=URL1,
            title="Article One",
            publisher="example.com",
            published_date=datetime(2025, 11, 1, tzinfo=timezone.utc),
            theme_id="t-ai",
        ),
        Article(id="a2", url=URL2, title="Article Two", publisher="example.com"),
        Article(id="a3", url=URL3, title="Article Three", publisher=""),
    ]


@pytest.fixture
def themes() -> list[Theme]:
    return [
        Theme(id="t-ai", name="AI"),
        Theme(id="t-cloud", name="Cloud"),
    ]


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "digests.db"


@pytest.fixture
def db(db_path: Path):
    database = DigestDatabase(db_path, busy_timeout_ms=5000)
    database.open()
    yield database
    database.close()


@pytest.fixture
def seeded_db(db: DigestDatabase, articles: list[Article], themes: list[Theme]) -> DigestDatabase:
    with db.transaction() as tx:
        for article in articles:
            db.articles(tx).upsert(article)
        for theme in themes:
            db.themes(tx).upsert(theme)
    return db


@pytest.fixture
def digest(articles: list[Article]) -> Digest:
    a1, a2, _ = articles
    return Digest(
        id="digest-1",
        title="AI Weekly",
        summary=(
            f"Recent research [[1]]({URL1}) shows improvements. "
            f"Cloud vendors responded [[2]]({URL2}). "
            "A rumour [[3]](https://unknown.example/rumour) is unconfirmed."
        ),
        articles=[a1, a2],
        article_groups=[
            ArticleGroup(theme="AI", articles=[a1]),
            ArticleGroup(theme="Unknown Theme", articles=[a2]),
        ],
        tldr_summary="AI moves fast.",
        key_moments=[{"quote": "shows improvements", "citation_id": 1}],
        metadata={"model": "test-model"},
    )


def count_rows(db: DigestDatabase, table: str, digest_id: str | None = None) -> int:
    if digest_id is None:
        row = db.executor.fetchone(f"SELECT COUNT(*) AS n FROM {table}")  # noqa: S608
    else:
        column = "id" if table == "digests" else "digest_id"
        row = db.executor.fetchone(
            f"SELECT COUNT(*) AS n FROM {table} WHERE {column} = ?", (digest_id,)  # noqa: S608
        )
    return row["n"]
