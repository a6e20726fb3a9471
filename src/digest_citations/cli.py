"""
Command line entry point.

Subcommands:
    init-db     Create the database schema.
    store       Store a digest JSON file with its links and citations.
    validate    Check a digest JSON file's citations against its articles.
    show        Print a stored digest with its formatted citations.

Exit codes:
    0: Success
    1: Fatal error (bad config, unreadable digest, failed store, unknown digest)
"""
import argparse
import sys
from pathlib import Path
from typing import Sequence

import yaml
from pydantic import ValidationError

from digest_citations.citations.formatting import CitationStyle, format_citation
from digest_citations.citations.parser import CitationParser
from digest_citations.citations.resolver import CitationResolver
from digest_citations.config_interface import Config, get_config_version, load_config
from digest_citations.data_models import Digest
from digest_citations.logger import get_logger, setup_logging
from digest_citations.persistence.database_interface import DBError
from digest_citations.persistence.digest_writer import DigestPayloadError, DigestWriter
from digest_citations.persistence.repositories import DigestDatabase

logger = get_logger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="digest-citations",
        description="Citation resolution and atomic digest storage",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (defaults are used when omitted)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database, overrides the config file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema")

    store = sub.add_parser("store", help="Store a digest JSON file")
    store.add_argument("digest_file", type=Path, help="Digest JSON file")
    store.add_argument(
        "--inject-urls",
        action="store_true",
        help="Rewrite bare [[N]] markers to [[N]](url) before storing",
    )
    store.add_argument(
        "--upsert-articles",
        action="store_true",
        help="Write the digest's articles to the article table first",
    )
    store.add_argument(
        "--theme-id",
        action="append",
        default=[],
        help="Extra theme ID to link (repeatable)",
    )

    validate = sub.add_parser("validate", help="Validate a digest JSON file's citations")
    validate.add_argument("digest_file", type=Path, help="Digest JSON file")

    show = sub.add_parser("show", help="Print a stored digest")
    show.add_argument("digest_id", help="Digest ID")
    show.add_argument(
        "--style",
        choices=[s.value for s in CitationStyle],
        default=CitationStyle.simple.value,
        help="Citation style",
    )
    return parser.parse_args(argv)


def load_digest(path: Path) -> Digest:
    """Read and validate a digest JSON file."""
    return Digest.model_validate_json(path.read_text(encoding="utf-8"))


def run_validate(digest: Digest, parser: CitationParser) -> int:
    resolver = CitationResolver(parser=parser)
    warnings = resolver.validate_citations(digest.summary, digest.articles)
    audit = resolver.audit_citations(digest.summary, digest.articles)
    for warning in warnings:
        print(f"WARNING: {warning}")
    print(f"Citations: {parser.count_citations(digest.summary)}")
    print(f"Referenced numbers: {audit.referenced_numbers}")
    if audit.out_of_range_numbers:
        print(f"Out of range: {audit.out_of_range_numbers} (digest has {digest.article_count} articles)")
    print("OK" if audit.is_complete and not warnings else "INCOMPLETE")
    return 0


def run_store(db: DigestDatabase, writer: DigestWriter, digest: Digest, args: argparse.Namespace) -> int:
    if args.inject_urls:
        resolver = CitationResolver()
        digest = digest.model_copy(
            update={"summary": resolver.inject_citation_urls(digest.summary, digest.articles)}
        )
    if args.upsert_articles:
        with db.transaction() as tx:
            articles = db.articles(tx)
            for article in digest.articles:
                articles.upsert(article)
        logger.info(f"Upserted {digest.article_count} articles")
    result = writer.store_digest(digest, theme_ids=args.theme_id)
    print(
        f"Stored digest {result.digest_id}: {result.article_links} articles, "
        f"{result.theme_links} themes, {result.citations_stored} citations"
    )
    if result.citations_dropped:
        print(f"Dropped {result.citations_dropped} citation(s) with unknown URLs")
    if result.skipped_themes:
        print(f"Skipped unknown themes: {', '.join(result.skipped_themes)}")
    return 0


def run_show(writer: DigestWriter, digest_id: str, style: str) -> int:
    stored = writer.get_full(digest_id)
    if stored is None:
        logger.error(f"Digest not found: {digest_id}")
        return 1
    print(f"# {stored.digest.title}")
    print()
    print(stored.digest.summary)
    print()
    for citation in stored.citations:
        print(f"[{citation.citation_number}] {format_citation(citation, style)}")
    return 0


def run(args: argparse.Namespace) -> int:
    """
    Execute the selected subcommand.

    :param args: Parsed command-line arguments.
    :return: Exit code (0 for success, 1 for failure).
    """
    try:
        config = load_config(args.config) if args.config is not None else Config()
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        logger.error("Configuration validation failed: %s", e)
        return 1

    setup_logging("DEBUG" if args.verbose else config.logging.level, config.logging.file)
    logger.debug("Config version %s", get_config_version(config))
    parser = CitationParser(context_window=config.citations.context_window)

    if args.command == "validate":
        try:
            digest = load_digest(args.digest_file)
        except (OSError, ValidationError) as e:
            logger.error("Could not read digest %s: %s", args.digest_file, e)
            return 1
        return run_validate(digest, parser)

    db_path = args.db if args.db is not None else config.database.path
    db = DigestDatabase(db_path, busy_timeout_ms=config.database.busy_timeout_ms)
    try:
        db.open()
    except DBError as e:
        logger.error("Database connection failed: %s", e)
        return 1

    try:
        writer = DigestWriter(db, parser=parser)
        if args.command == "init-db":
            db.create_schema()
            logger.info("Schema ready at %s", db_path)
            return 0
        if args.command == "show":
            return run_show(writer, args.digest_id, args.style)
        try:
            digest = load_digest(args.digest_file)
        except (OSError, ValidationError) as e:
            logger.error("Could not read digest %s: %s", args.digest_file, e)
            return 1
        try:
            return run_store(db, writer, digest, args)
        except (DigestPayloadError, DBError) as e:
            logger.error("Storing digest %s failed: %s", digest.id, e)
            return 1
    finally:
        db.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Set main entry point for the command line."""
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
