import hashlib
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_sha256_hex(value: str) -> str:
    """Validate that a string is a valid SHA256 hex digest."""
    if len(value) != 64:
        raise ValueError(f"SHA256 hex must be 64 characters, got {len(value)}")
    if value != value.lower():
        raise ValueError("SHA256 hex must be lowercase")
    try:
        int(value, 16)
    except ValueError:
        raise ValueError("SHA256 hex must contain only hex characters")  # noqa: B904
    return value


def compute_sha256_id(*components: str | int | None) -> str:
    """
    Compute a deterministic SHA256 hex ID from components.

    :param components: Values to join with '|' separator.
    :return: Lowercase 64-character hex string.
    """
    joined = "|".join(str(c) if c is not None else "" for c in components)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest().lower()


def _to_datetime(d: Any) -> datetime | None:
    if d is None or d == "":
        return None
    if isinstance(d, datetime):
        return d
    if hasattr(d, "isoformat"):
        return datetime.fromisoformat(d.isoformat())
    return datetime.fromisoformat(str(d))


class Article(BaseModel):
    """A source article as owned by the article store."""

    id: str
    url: str # unique natural key
    title: str = ""
    publisher: str = "" # e.g. "anthropic.com"
    published_date: datetime | None = None
    theme_id: str | None = None # theme assigned by the categoriser, if any

    @field_validator("published_date", mode="before")
    @classmethod
    def to_datetime(cls, d: Any) -> datetime | None:
        """Convert input to a datetime object."""
        return _to_datetime(d)


class Theme(BaseModel):
    """A named theme; only name -> id resolution matters here."""

    id: str
    name: str
    description: str = ""
    enabled: bool = True


class ArticleGroup(BaseModel):
    """Articles of a digest that share one theme."""

    theme: str
    articles: list[Article] = Field(default_factory=list)
    summary: str = ""


class Digest(BaseModel):
    """
    A generated digest as handed over by the generation pipeline.

    The order of ``articles`` defines citation numbering: ``[[N]]`` in
    ``summary`` refers to ``articles[N - 1]``.
    """

    id: str
    title: str = ""
    summary: str = ""
    articles: list[Article] = Field(default_factory=list)
    article_groups: list[ArticleGroup] = Field(default_factory=list)

    tldr_summary: str = ""
    key_moments: list[dict[str, Any]] = Field(default_factory=list)
    perspectives: list[dict[str, Any]] = Field(default_factory=list)
    why_it_matters: str = ""
    cluster_id: int | None = None
    processed_date: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("processed_date", mode="before")
    @classmethod
    def to_datetime(cls, d: Any) -> datetime | None:
        """Convert input to a datetime object."""
        return _to_datetime(d)

    @property
    def article_count(self) -> int:
        return len(self.articles)

    @property
    def theme_names(self) -> list[str]:
        """Distinct theme names of the article groups, in first-seen order."""
        names: list[str] = []
        for group in self.article_groups:
            name = group.theme.strip()
            if name and name not in names:
                names.append(name)
        return names


class CitationReference(BaseModel):
    """One citation marker occurrence found in markdown text."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(ge=1)
    url: str = ""
    context: str = ""


class CitationRecord(BaseModel):
    """A resolved citation tying a digest, an article and a citation number together."""

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        extra="forbid",
    )

    id: str
    digest_id: str
    article_id: str
    citation_number: int = Field(ge=1)
    url: str
    title: str = ""
    publisher: str = ""
    published_date: datetime | None = None
    accessed_date: datetime
    context: str = ""
    created_at: datetime

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        return _validate_sha256_hex(v)

    @field_validator("published_date", "accessed_date", "created_at", mode="before")
    @classmethod
    def to_datetime(cls, d: Any) -> datetime | None:
        """Convert input to a datetime object."""
        return _to_datetime(d)
