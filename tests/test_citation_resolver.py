from datetime import datetime, timezone

import pytest
from conftest import URL1, URL2, URL3, FixedClock

from digest_citations.citations.parser import CitationParser
from digest_citations.citations.resolver import CitationResolver
from digest_citations.data_models import Article, CitationReference


@pytest.fixture
def resolver(clock: FixedClock) -> CitationResolver:
    return CitationResolver(clock=clock)


@pytest.fixture
def articles_by_url(articles: list[Article]) -> dict[str, Article]:
    return {article.url: article for article in articles}


class TestInjectCitationUrls:
    def test_injects_urls_in_range(self, resolver: CitationResolver, articles: list[Article]) -> None:
        markdown = "Study shows [[1]] and [[2]] are correct"
        expected = f"Study shows [[1]]({URL1}) and [[2]]({URL2}) are correct"
        assert resolver.inject_citation_urls(markdown, articles[:2]) == expected

    def test_out_of_range_marker_is_unchanged(self, resolver: CitationResolver, articles: list[Article]) -> None:
        markdown = "Study shows [[5]] is wrong"
        assert resolver.inject_citation_urls(markdown, articles[:1]) == markdown

    def test_zero_marker_is_unchanged(self, resolver: CitationResolver, articles: list[Article]) -> None:
        assert resolver.inject_citation_urls("See [[0]].", articles) == "See [[0]]."

    def test_existing_urls_are_not_touched(self, resolver: CitationResolver, articles: list[Article]) -> None:
        markdown = "Already [[1]](https://elsewhere.example/x) and bare [[2]]"
        assert resolver.inject_citation_urls(markdown, articles) == (
            f"Already [[1]](https://elsewhere.example/x) and bare [[2]]({URL2})"
        )

    def test_marker_at_end_of_text(self, resolver: CitationResolver, articles: list[Article]) -> None:
        assert resolver.inject_citation_urls("Ends with [[3]]", articles) == f"Ends with [[3]]({URL3})"

    def test_empty_inputs(self, resolver: CitationResolver, articles: list[Article]) -> None:
        assert resolver.inject_citation_urls("", articles) == ""
        assert resolver.inject_citation_urls("Cites [[1]]", []) == "Cites [[1]]"

    def test_injected_text_resolves_every_in_range_number(
        self, resolver: CitationResolver, articles: list[Article], articles_by_url: dict[str, Article],
    ) -> None:
        injected = resolver.inject_citation_urls("One [[1]], two [[2]], three [[3]], four [[4]].", articles)
        references = CitationParser().extract_citations(injected)
        records = resolver.build_citation_records("d", references, articles_by_url)

        assert [r.citation_number for r in records] == [1, 2, 3]
        assert "[[4]]" in injected and "[[4]](" not in injected


class TestBuildCitationRecords:
    def test_resolves_known_urls(
        self, resolver: CitationResolver, articles_by_url: dict[str, Article], clock: FixedClock,
    ) -> None:
        references = [CitationReference(number=1, url=URL1, context="ctx")]

        records = resolver.build_citation_records("digest-123", references, articles_by_url)

        assert len(records) == 1
        record = records[0]
        assert record.digest_id == "digest-123"
        assert record.article_id == "a1"
        assert record.citation_number == 1
        assert record.url == URL1
        assert record.title == "Article One"
        assert record.publisher == "example.com"
        assert record.published_date == datetime(2025, 11, 1, tzinfo=timezone.utc)
        assert record.context == "ctx"
        assert record.accessed_date == clock.now
        assert record.created_at == clock.now

    def test_unknown_urls_are_dropped(self, resolver: CitationResolver, articles_by_url: dict[str, Article]) -> None:
        references = [
            CitationReference(number=1, url=URL1, context="a"),
            CitationReference(number=2, url="https://unknown.example/x", context="b"),
            CitationReference(number=3, url=URL3, context="c"),
        ]

        records = resolver.build_citation_records("d", references, articles_by_url)

        assert [r.citation_number for r in records] == [1, 3]

    def test_empty_inputs_give_no_records(
        self, resolver: CitationResolver, articles_by_url: dict[str, Article],
    ) -> None:
        assert resolver.build_citation_records("d", [], articles_by_url) == []
        refs = [CitationReference(number=1, url=URL1, context="a")]
        assert resolver.build_citation_records("d", refs, {}) == []

    def test_publisher_falls_back_to_url_domain(self, resolver: CitationResolver) -> None:
        article = Article(id="b1", url="https://www.blog.example.com/x", title="Blog")
        refs = [CitationReference(number=1, url=article.url, context="a")]

        record = resolver.build_citation_records("d", refs, {article.url: article})[0]

        assert record.publisher == "example.com"

    def test_ids_are_stable_and_distinct(
        self, resolver: CitationResolver, articles_by_url: dict[str, Article], clock: FixedClock,
    ) -> None:
        references = [
            CitationReference(number=1, url=URL1, context="first"),
            CitationReference(number=1, url=URL1, context="second"),
            CitationReference(number=2, url=URL2, context="third"),
        ]

        first = resolver.build_citation_records("d", references, articles_by_url)
        clock.now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        second = resolver.build_citation_records("d", references, articles_by_url)
        other_digest = resolver.build_citation_records("other", references, articles_by_url)

        assert [r.id for r in first] == [r.id for r in second]
        assert len({r.id for r in first}) == 3
        assert not {r.id for r in first} & {r.id for r in other_digest}
        assert all(len(r.id) == 64 for r in first)

    def test_every_record_matches_an_article(
        self, resolver: CitationResolver, digest, articles_by_url: dict[str, Article],
    ) -> None:
        references = CitationParser().extract_citations(digest.summary)
        records = resolver.build_citation_records(digest.id, references, articles_by_url)

        assert len(records) == 2
        for record in records:
            assert articles_by_url[record.url].id == record.article_id


class TestValidateCitations:
    def test_unknown_url_produces_warning(self, resolver: CitationResolver) -> None:
        markdown = "Valid [[1]](https://a.com) and invalid [[2]](https://unknown.com)"
        articles = [Article(id="1", url="https://a.com")]

        warnings = resolver.validate_citations(markdown, articles)

        assert warnings == ["Citation [2] references unknown URL: https://unknown.com"]

    def test_all_known_gives_no_warnings(self, resolver: CitationResolver, articles: list[Article]) -> None:
        markdown = f"One [[1]]({URL1}) and [2]({URL2})."
        assert resolver.validate_citations(markdown, articles) == []

    def test_bare_markers_are_not_warned_about(self, resolver: CitationResolver) -> None:
        assert resolver.validate_citations("Bare [[9]] marker", []) == []

    def test_repeated_unknown_url_warns_per_occurrence(self, resolver: CitationResolver) -> None:
        markdown = "[[1]](https://x.example) and again [[1]](https://x.example)"
        assert len(resolver.validate_citations(markdown, [])) == 2


class TestAuditCitations:
    def test_complete_digest(self, resolver: CitationResolver, articles: list[Article]) -> None:
        audit = resolver.audit_citations(f"[[1]]({URL1}) and [[2]]", articles[:2])

        assert audit.referenced_numbers == [1, 2]
        assert audit.resolved_numbers == [1, 2]
        assert audit.out_of_range_numbers == []
        assert audit.unresolved_urls == []
        assert audit.is_complete

    def test_incomplete_digest(self, resolver: CitationResolver, digest) -> None:
        audit = resolver.audit_citations(digest.summary + " Also [[7]].", digest.articles)

        assert audit.referenced_numbers == [1, 2, 3, 7]
        assert audit.out_of_range_numbers == [3, 7]
        assert audit.unresolved_urls == ["https://unknown.example/rumour"]
        assert not audit.is_complete


def test_inject_example_sentence(resolver: CitationResolver, articles: list[Article]) -> None:
    result = resolver.inject_citation_urls("According to [[1]] and [[2]], this is true.", articles[:2])
    assert result == f"According to [[1]]({URL1}) and [[2]]({URL2}), this is true."


def test_validate_example_sentence(resolver: CitationResolver, articles: list[Article]) -> None:
    markdown = f"Text with [[1]]({URL1}) and [[2]](https://unknown.com)"
    assert resolver.validate_citations(markdown, articles[:2]) == [
        "Citation [2] references unknown URL: https://unknown.com"
    ]


def test_inject_keeps_marker_text(resolver: CitationResolver, articles: list[Article]) -> None:
    assert resolver.inject_citation_urls("Padded [[01]] marker", articles) == f"Padded [[01]]({URL1}) marker"


def test_inject_ignores_overlong_numbers(resolver: CitationResolver, articles: list[Article]) -> None:
    markdown = "Huge [[" + "9" * 5000 + "]] marker"
    assert resolver.inject_citation_urls(markdown, articles) == markdown
