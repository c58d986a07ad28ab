"""Public interface for the ``statement_ledger`` package.

This module exposes the service facade and the public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
SQLAlchemy-backed stores live in ``statement_ledger.persistence``.
"""

from .api import ErrorInfo, LedgerService, ServiceResult
from .errors import (
    ClassifierError,
    DuplicateFingerprintError,
    FingerprintError,
    LedgerError,
    ParserError,
    StoreError,
)
from .ingest import IngestResult, JsonStatementParser
from .llm import LlmClassifier, LlmReply, OpenAIClassifier
from .models import (
    CanonicalTransaction,
    CategoryResolution,
    MappingRecord,
    ParsedStatement,
    RawTransaction,
    StatementTransaction,
    VendorResolution,
)
from .ports import StatementParser
from .processor import LinkResult, ProcessingResult
from .settings import LedgerSettings

__all__ = [
    # API
    "LedgerService",
    "ServiceResult",
    "ErrorInfo",
    "LedgerSettings",
    "ProcessingResult",
    "LinkResult",
    "IngestResult",
    # Collaborators
    "StatementParser",
    "JsonStatementParser",
    "LlmClassifier",
    "LlmReply",
    "OpenAIClassifier",
    # Models / types
    "StatementTransaction",
    "ParsedStatement",
    "RawTransaction",
    "CanonicalTransaction",
    "MappingRecord",
    "VendorResolution",
    "CategoryResolution",
    # Errors
    "LedgerError",
    "FingerprintError",
    "StoreError",
    "DuplicateFingerprintError",
    "ClassifierError",
    "ParserError",
]
