from digest_citations.persistence.database_interface import (
    ConnectionExecutor,
    DatabaseInterface,
    DBConstraintError,
    DBDeterminismError,
    DBError,
    DBSchemaError,
    Executor,
    RepositoryAccessError,
    TransactionExecutor,
)
from digest_citations.persistence.digest_writer import (
    DigestPayloadError,
    DigestStoreCancelledError,
    DigestStoreError,
    DigestWriter,
    StoredDigest,
    StoreResult,
)
from digest_citations.persistence.repositories import (
    ArticleRepository,
    CitationRepository,
    DigestDatabase,
    DigestRepository,
    ThemeRepository,
)

__all__ = [
    "ArticleRepository",
    "CitationRepository",
    "ConnectionExecutor",
    "DatabaseInterface",
    "DBConstraintError",
    "DBDeterminismError",
    "DBError",
    "DBSchemaError",
    "DigestDatabase",
    "DigestPayloadError",
    "DigestRepository",
    "DigestStoreCancelledError",
    "DigestStoreError",
    "DigestWriter",
    "Executor",
    "RepositoryAccessError",
    "StoredDigest",
    "StoreResult",
    "ThemeRepository",
    "TransactionExecutor",
]
