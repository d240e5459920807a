"""
Database Package for HalamangGaling Indigenous Knowledge Registry

This package provides:
- SQLAlchemy ORM models for accounts, knowledge records, access log and audit log
- FastAPI Dependency Injection for database sessions
- A commit-or-rollback session scope for scripts
- Repository pattern for data access
- Services that combine access decisions with persistence
"""

from database.models import (
    Base,
    User,
    KnowledgeRecord,
    AccessLogEntry,
    AuditLog,
    UserRole,
    AccessLevel,
    IPRStatus,
    KnowledgeType,
    VerificationStatus,
    SensitivityLevel,
    AuditAction,
    AppendOnlyViolation,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    RecordNotFoundError,
    DuplicateRecordError,
    StorageError,
    KnowledgeFilters,
)

__all__ = [
    # Base
    'Base',
    # Models
    'User',
    'KnowledgeRecord',
    'AccessLogEntry',
    'AuditLog',
    'AppendOnlyViolation',
    # Enums
    'UserRole',
    'AccessLevel',
    'IPRStatus',
    'KnowledgeType',
    'VerificationStatus',
    'SensitivityLevel',
    'AuditAction',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    # FastAPI dependencies
    'get_db',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Repository errors
    'RepositoryError',
    'RecordNotFoundError',
    'DuplicateRecordError',
    'StorageError',
    'KnowledgeFilters',
]
