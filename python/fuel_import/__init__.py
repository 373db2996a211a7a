"""
Fuel Statement Import Module

Parses fuel card statements, matches transactions to fleet vehicles,
detects duplicates, classifies rows for review and commits approved
batches with odometer updates.
"""

from .anomaly_checker import AnomalyChecker, FuelHistoryEntry
from .classifier import TransactionClassifier
from .committer import ImportCommitter
from .config import FuelImportConfig, load_config
from .duplicate_detector import DuplicateDetector, PriorImportIndex
from .errors import (
    CommitPartialFailure,
    ConfigurationError,
    FuelImportError,
    ParseError,
    SessionClosedError,
    SessionError,
    StoreError,
    StoreUnavailableError,
    UnknownTransactionError,
    ValidationError,
)
from .models import (
    CommitResult,
    FinalRow,
    MatchResult,
    MatchType,
    OdometerUpdate,
    ProcessedTransaction,
    RawStatementRow,
    ReconciliationSummary,
    RowError,
    TransactionStatus,
    TransactionType,
    VehicleDirectoryEntry,
)
from .processor import FuelStatementProcessor
from .session import ReconciliationSession, SessionState
from .statement_parser import FuelStatementParser, ParseResult
from .store import FuelDataStore, SqlFuelStore, UnitOfWork, create_store_engine
from .vehicle_matcher import VehicleMatcher

__all__ = [
    # Parsing
    "FuelStatementParser",
    "ParseResult",
    # Matching and classification
    "VehicleMatcher",
    "DuplicateDetector",
    "PriorImportIndex",
    "TransactionClassifier",
    "AnomalyChecker",
    "FuelHistoryEntry",
    # Session and commit
    "ReconciliationSession",
    "SessionState",
    "ImportCommitter",
    "FuelStatementProcessor",
    # Store
    "FuelDataStore",
    "UnitOfWork",
    "SqlFuelStore",
    "create_store_engine",
    # Configuration
    "FuelImportConfig",
    "load_config",
    # Models
    "RawStatementRow",
    "RowError",
    "VehicleDirectoryEntry",
    "MatchResult",
    "MatchType",
    "ProcessedTransaction",
    "TransactionStatus",
    "TransactionType",
    "ReconciliationSummary",
    "FinalRow",
    "OdometerUpdate",
    "CommitResult",
    # Errors
    "FuelImportError",
    "ConfigurationError",
    "ParseError",
    "SessionError",
    "UnknownTransactionError",
    "SessionClosedError",
    "ValidationError",
    "StoreError",
    "StoreUnavailableError",
    "CommitPartialFailure",
]
