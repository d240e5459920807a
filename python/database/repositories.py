"""
Repository Pattern for HalamangGaling Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories flush but never commit; the calling service owns the
transaction.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Tuple
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    User,
    KnowledgeRecord,
    AccessLogEntry,
    AuditLog,
    AccessLevel,
    AuditAction,
    IPRStatus,
    KnowledgeType,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class RecordNotFoundError(RepositoryError):
    """Raised when a record or account is absent or inactive."""
    pass


class DuplicateRecordError(RepositoryError):
    """Raised when a unique value (email, username, consent id) is taken."""
    pass


class StorageError(RepositoryError):
    """Raised when the database is unreachable or rejects a write."""
    pass


# ============================================
# USER REPOSITORY
# ============================================

class UserRepository:
    """Repository for account operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, user: User) -> User:
        """
        Persist a new account.

        Raises:
            DuplicateRecordError: If the email or username is taken
        """
        try:
            self.session.add(user)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"User insert rejected: {e.orig}")
            raise DuplicateRecordError("User with this email or username already exists")

        logger.debug(f"Created user: {user.id} ({user.username})")
        return user

    def get_by_id(self, user_id: UUID) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_login(self, identifier: str) -> Optional[User]:
        """Find an account by email (case-insensitive) or exact username."""
        query = select(User).where(
            or_(
                User.email == identifier.strip().lower(),
                User.username == identifier.strip()
            )
        )
        return self.session.execute(query).scalars().first()

    def exists(self, email: str, username: str) -> bool:
        query = select(func.count()).select_from(User).where(
            or_(User.email == email.lower(), User.username == username)
        )
        return self.session.execute(query).scalar_one() > 0

    def touch_last_login(self, user: User) -> None:
        user.last_login = datetime.now(timezone.utc)
        self.session.flush()


# ============================================
# KNOWLEDGE REPOSITORY
# ============================================

@dataclass
class KnowledgeFilters:
    """User-supplied listing filters, ANDed on top of the role scope"""
    community: Optional[str] = None
    indigenous_group: Optional[str] = None
    knowledge_type: Optional[KnowledgeType] = None
    ipr_status: Optional[IPRStatus] = None
    consent_valid: bool = False


def consent_valid_clause(now: Optional[datetime] = None):
    """SQL form of the consent validity check"""
    now = now or datetime.now(timezone.utc)
    return and_(
        KnowledgeRecord.consent_obtained.is_(True),
        KnowledgeRecord.consent_revoked_at.is_(None),
        or_(
            KnowledgeRecord.consent_expiry_date.is_(None),
            KnowledgeRecord.consent_expiry_date >= now
        )
    )


def _icontains(column, term: str):
    return func.lower(column).contains(term.lower(), autoescape=True)


class KnowledgeRepository:
    """Repository for indigenous-knowledge records and their access log."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, record: KnowledgeRecord) -> KnowledgeRecord:
        """
        Persist a new record.

        Raises:
            DuplicateRecordError: If the consent id is already in use
        """
        try:
            self.session.add(record)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"Knowledge record insert rejected: {e.orig}")
            raise DuplicateRecordError("Consent id is already in use by another record")

        logger.debug(f"Created knowledge record: {record.id} ({record.community_name})")
        return record

    def get_active(self, record_id: UUID) -> Optional[KnowledgeRecord]:
        """Get an active record by id; archived records are treated as absent."""
        query = select(KnowledgeRecord).where(
            and_(
                KnowledgeRecord.id == record_id,
                KnowledgeRecord.is_active.is_(True)
            )
        )
        return self.session.execute(query).scalar_one_or_none()

    def list_visible(
        self,
        access_levels: Optional[List[AccessLevel]] = None,
        require_consent: bool = False,
        community: Optional[str] = None,
        filters: Optional[KnowledgeFilters] = None,
        offset: int = 0,
        limit: int = 20
    ) -> Tuple[List[KnowledgeRecord], int]:
        """
        List active records inside a role scope, newest first.

        Args:
            access_levels: Allowed levels (None = all)
            require_consent: Only records with consent obtained
            community: Exact community name the caller is confined to
            filters: User-supplied filters
            offset: Pagination offset
            limit: Maximum results

        Returns:
            Tuple of (records list, total count)
        """
        conditions = [KnowledgeRecord.is_active.is_(True)]

        if access_levels is not None:
            conditions.append(KnowledgeRecord.access_level.in_(list(access_levels)))
        if require_consent:
            conditions.append(KnowledgeRecord.consent_obtained.is_(True))
        if community is not None:
            conditions.append(KnowledgeRecord.community_name == community)

        if filters:
            if filters.community:
                conditions.append(_icontains(KnowledgeRecord.community_name, filters.community))
            if filters.indigenous_group:
                conditions.append(_icontains(KnowledgeRecord.indigenous_group, filters.indigenous_group))
            if filters.knowledge_type:
                conditions.append(KnowledgeRecord.knowledge_type == filters.knowledge_type)
            if filters.ipr_status:
                conditions.append(KnowledgeRecord.ipr_status == filters.ipr_status)
            if filters.consent_valid:
                conditions.append(consent_valid_clause())

        count_query = select(func.count()).select_from(KnowledgeRecord).where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        query = (
            select(KnowledgeRecord)
            .where(and_(*conditions))
            .order_by(KnowledgeRecord.created_at.desc(), KnowledgeRecord.id)
            .offset(offset)
            .limit(limit)
        )
        records = list(self.session.execute(query).scalars().all())

        return records, total

    def list_public(self, limit: int = 50) -> List[KnowledgeRecord]:
        """Public, consented, public-domain or protected records."""
        query = (
            select(KnowledgeRecord)
            .where(
                and_(
                    KnowledgeRecord.is_active.is_(True),
                    KnowledgeRecord.access_level == AccessLevel.PUBLIC,
                    KnowledgeRecord.consent_obtained.is_(True),
                    KnowledgeRecord.ipr_status.in_([IPRStatus.PUBLIC_DOMAIN, IPRStatus.PROTECTED])
                )
            )
            .order_by(KnowledgeRecord.created_at.desc(), KnowledgeRecord.id)
            .limit(limit)
        )
        return list(self.session.execute(query).scalars().all())

    def list_by_community(self, community_name: str, exact: bool = False) -> List[KnowledgeRecord]:
        """Active records of a community; a case-insensitive substring match unless ``exact``."""
        if exact:
            match = KnowledgeRecord.community_name == community_name
        else:
            match = _icontains(KnowledgeRecord.community_name, community_name)
        query = (
            select(KnowledgeRecord)
            .where(and_(KnowledgeRecord.is_active.is_(True), match))
            .order_by(KnowledgeRecord.created_at.desc(), KnowledgeRecord.id)
        )
        return list(self.session.execute(query).scalars().all())

    def list_pending_ipr_review(self) -> List[KnowledgeRecord]:
        """Active, consented records still awaiting an IPR assessment."""
        query = (
            select(KnowledgeRecord)
            .where(
                and_(
                    KnowledgeRecord.is_active.is_(True),
                    KnowledgeRecord.consent_obtained.is_(True),
                    KnowledgeRecord.ipr_status == IPRStatus.PENDING_ASSESSMENT
                )
            )
            .order_by(KnowledgeRecord.created_at.asc(), KnowledgeRecord.id)
        )
        return list(self.session.execute(query).scalars().all())

    def append_access(
        self,
        record: KnowledgeRecord,
        user_id: Optional[UUID],
        purpose: str,
        approved: bool = True
    ) -> AccessLogEntry:
        """Append one entry to the record's access log."""
        entry = AccessLogEntry(
            record_id=record.id,
            user_id=user_id,
            accessed_at=datetime.now(timezone.utc),
            purpose=purpose,
            approved=approved
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def get_access_log(self, record_id: UUID) -> List[AccessLogEntry]:
        query = (
            select(AccessLogEntry)
            .where(AccessLogEntry.record_id == record_id)
            .order_by(AccessLogEntry.accessed_at.asc(), AccessLogEntry.id)
        )
        return list(self.session.execute(query).scalars().all())

    def archive(self, record: KnowledgeRecord, reason: Optional[str]) -> KnowledgeRecord:
        """Soft delete: the record stops being visible but is never removed."""
        record.is_active = False
        record.archived_at = datetime.now(timezone.utc)
        record.archive_reason = reason
        self.session.flush()
        return record


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        actor_role: Optional[str] = None,
        actor_ip: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: Type of action
            resource_type: Type of resource affected
            resource_id: ID of resource
            actor_*: Actor information
            details: Additional details
            old_value: Value before change
            new_value: Value after change
            success: Whether action succeeded
            error_message: Error if failed

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            actor_name=actor_name,
            actor_role=actor_role,
            actor_ip=actor_ip,
            details=details,
            old_value=old_value,
            new_value=new_value,
            success=success,
            error_message=error_message
        )

        self.session.add(log)
        self.session.flush()
        return log

    def search(
        self,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[AuditLog], int]:
        """
        Search audit logs with filters.

        Returns:
            Tuple of (logs list, total count)
        """
        conditions = []

        if action:
            conditions.append(AuditLog.action == action)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)
        if actor_id:
            conditions.append(AuditLog.actor_id == actor_id)
        if start_date:
            conditions.append(AuditLog.timestamp >= start_date)
        if end_date:
            conditions.append(AuditLog.timestamp <= end_date)

        count_query = select(func.count()).select_from(AuditLog)
        if conditions:
            count_query = count_query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        query = select(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit)

        logs = list(self.session.execute(query).scalars().all())

        return logs, total
