"""
SQLAlchemy ORM Models for the HalamangGaling Indigenous Knowledge Registry

Schema notes:
- UUID primary keys (generic ``Uuid`` type, native on PostgreSQL)
- Enum columns store the enum *values* so raw SQL and CHECK constraints
  can compare against the same strings the API uses
- Nested sub-documents of a knowledge record (location, benefit sharing,
  knowledge holders, media...) are JSON columns; everything the access
  rules look at is a plain indexed column
- Consent invariants are enforced by CHECK constraints in the database
- Access log entries and audit logs are append-only

Tables:
1. users - Accounts, roles, permission flags and indigenous affiliation
2. indigenous_knowledge - Knowledge records with consent and IPR state
3. knowledge_access_log - One row per permitted single-record read
4. audit_logs - System-wide audit trail
"""

import secrets
import string
import time
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Boolean, DateTime, Text, ForeignKey, Index, CheckConstraint,
    Enum, JSON, Uuid, event
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class UserRole(str, PyEnum):
    """Account role"""
    USER = "user"
    PROFESSIONAL = "professional"
    RESEARCHER = "researcher"
    REVIEWER = "reviewer"
    EDITOR = "editor"
    ADMIN = "admin"
    INDIGENOUS_REPRESENTATIVE = "indigenous_representative"


class AccessLevel(str, PyEnum):
    """Visibility tier of a knowledge record, least to most restrictive"""
    PUBLIC = "public"
    REGISTERED_USERS = "registered_users"
    RESEARCHERS_ONLY = "researchers_only"
    COMMUNITY_ONLY = "community_only"
    RESTRICTED = "restricted"
    PRIVATE = "private"


class IPRStatus(str, PyEnum):
    """Intellectual-property standing of a knowledge record"""
    PUBLIC_DOMAIN = "public_domain"
    PROTECTED = "protected"
    PROPRIETARY = "proprietary"
    RESTRICTED = "restricted"
    PENDING_ASSESSMENT = "pending_assessment"


class KnowledgeType(str, PyEnum):
    """Kind of traditional knowledge recorded"""
    MEDICINAL_USE = "Medicinal Use"
    PREPARATION_METHOD = "Preparation Method"
    CULTURAL_PRACTICE = "Cultural Practice"
    SPIRITUAL_USE = "Spiritual Use"
    AGRICULTURAL_PRACTICE = "Agricultural Practice"
    CONSERVATION_METHOD = "Conservation Method"
    OTHER = "Other"


class VerificationStatus(str, PyEnum):
    """Verification state of a knowledge record"""
    UNVERIFIED = "unverified"
    PENDING = "pending"
    COMMUNITY_VERIFIED = "community_verified"
    EXPERT_VERIFIED = "expert_verified"
    DISPUTED = "disputed"


class SensitivityLevel(str, PyEnum):
    """Cultural sensitivity classification"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    SACRED = "Sacred"


class AuditAction(str, PyEnum):
    """Type of audit action"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    ARCHIVE = "ARCHIVE"
    REVOKE_CONSENT = "REVOKE_CONSENT"
    APPROVE_IPR = "APPROVE_IPR"
    REGISTER = "REGISTER"
    LOGIN = "LOGIN"


def _enum(enum_cls: type, name: str) -> Enum:
    """Enum column type persisting member values, portable across backends"""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=40,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# ACCOUNTS
# ============================================

class User(Base, TimestampMixin):
    """
    Registered account.

    Permission flags are independent of the role; admin implies all of them
    at evaluation time, never by storing them.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.USER,
        index=True
    )

    # Profile
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    institution: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    position: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Permissions
    can_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_access_restricted_knowledge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_manage_ipr: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Indigenous affiliation (representatives)
    affiliation_community: Mapped[Optional[str]] = mapped_column(String(300), nullable=True, index=True)
    affiliation_group: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    affiliation_role: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.username

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"


# ============================================
# KNOWLEDGE RECORDS
# ============================================

class KnowledgeRecord(Base, TimestampMixin):
    """
    Indigenous-knowledge record.

    Never hard-deleted; ``is_active = False`` is the terminal state.
    Consent revocation is one-way and forces the record private.
    """
    __tablename__ = "indigenous_knowledge"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Community
    community_name: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    indigenous_group: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    knowledge_type: Mapped[KnowledgeType] = mapped_column(
        _enum(KnowledgeType, "knowledge_type"),
        nullable=False,
        index=True
    )
    plant_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    related_study_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # description, usage, preparation, rituals, prohibitions, seasonality, transmissionMethod
    traditional_knowledge: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Prior informed consent
    consent_obtained: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    consent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    consent_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    consent_expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    consent_scope_of_use: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    consent_document: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    consent_witnesses: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)
    consent_restrictions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consent_revocable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    consent_revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    consent_revoked_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Intellectual property rights
    ipr_status: Mapped[IPRStatus] = mapped_column(
        _enum(IPRStatus, "ipr_status"),
        nullable=False,
        default=IPRStatus.PENDING_ASSESSMENT,
        index=True
    )
    ipr_registration_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ipr_registered_with: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ipr_registration_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ipr_protection_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ipr_right_holders: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)

    benefit_sharing: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Documentation
    recorded_by: Mapped[dict] = mapped_column(JSON, nullable=False)
    recording_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    methodology: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    knowledge_holders: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)

    verification_status: Mapped[VerificationStatus] = mapped_column(
        _enum(VerificationStatus, "verification_status"),
        nullable=False,
        default=VerificationStatus.UNVERIFIED,
        index=True
    )
    verification_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Access control
    access_level: Mapped[AccessLevel] = mapped_column(
        _enum(AccessLevel, "access_level"),
        nullable=False,
        default=AccessLevel.RESTRICTED,
        index=True
    )
    access_restrictions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sensitivity_level: Mapped[SensitivityLevel] = mapped_column(
        _enum(SensitivityLevel, "sensitivity_level"),
        nullable=False,
        default=SensitivityLevel.MEDIUM
    )
    sensitivity_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cultural_significance: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    media: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archive_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Compliance
    ipra_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    nagoya_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ncip_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_review_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_review_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    access_log: Mapped[List["AccessLogEntry"]] = relationship(
        "AccessLogEntry",
        back_populates="record",
        order_by="AccessLogEntry.accessed_at",
        cascade="save-update, merge",
        passive_deletes="all"
    )

    __table_args__ = (
        CheckConstraint(
            "consent_obtained OR access_level = 'private'",
            name="ck_knowledge_consent_before_access"
        ),
        CheckConstraint(
            "consent_revoked_at IS NULL OR "
            "(NOT consent_obtained AND access_level = 'private')",
            name="ck_knowledge_revocation_is_private"
        ),
        Index('ix_knowledge_active_level', 'is_active', 'access_level'),
        Index('ix_knowledge_ipr_review', 'ipr_status', 'consent_obtained', 'is_active'),
    )

    def __repr__(self) -> str:
        return f"<KnowledgeRecord(id={self.id}, community='{self.community_name}', level='{self.access_level}')>"


class AccessLogEntry(Base):
    """
    One permitted single-record read.

    Append-only: the ORM refuses to update or delete an entry once written.
    ``user_id`` is NULL for anonymous readers of public records.
    """
    __tablename__ = "knowledge_access_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("indigenous_knowledge.id"), nullable=False, index=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, index=True
    )
    accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    purpose: Mapped[str] = mapped_column(String(500), nullable=False, default="View")
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    record: Mapped["KnowledgeRecord"] = relationship("KnowledgeRecord", back_populates="access_log")

    __table_args__ = (
        Index('ix_access_log_record_date', 'record_id', 'accessed_at'),
    )

    def __repr__(self) -> str:
        return f"<AccessLogEntry(record_id={self.record_id}, user_id={self.user_id}, purpose='{self.purpose}')>"


class AppendOnlyViolation(Exception):
    """Raised when code tries to change or remove an append-only row"""
    pass


@event.listens_for(AccessLogEntry, "before_update")
def _reject_access_log_update(mapper, connection, target):
    raise AppendOnlyViolation("Access log entries cannot be modified")


@event.listens_for(AccessLogEntry, "before_delete")
def _reject_access_log_delete(mapper, connection, target):
    raise AppendOnlyViolation("Access log entries cannot be deleted")


def generate_consent_id() -> str:
    """PIC-<epoch milliseconds>-<9 uppercase alphanumerics>"""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"PIC-{int(time.time() * 1000)}-{suffix}"


@event.listens_for(KnowledgeRecord, "before_insert")
def _assign_consent_id(mapper, connection, target):
    if target.consent_obtained and not target.consent_id:
        target.consent_id = generate_consent_id()


# ============================================
# AUDIT
# ============================================

class AuditLog(Base):
    """
    System-wide audit trail.

    Logs all state-changing actions for compliance review.
    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Timestamp (no updated_at - audit logs are immutable)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )

    action: Mapped[AuditAction] = mapped_column(
        _enum(AuditAction, "audit_action"),
        nullable=False,
        index=True
    )

    # Resource being acted upon
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Actor information
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    actor_ip: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Before/after state for updates
    old_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index('ix_audit_timestamp_action', 'timestamp', 'action'),
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
        Index('ix_audit_actor', 'actor_id', 'timestamp'),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, resource='{self.resource_type}')>"


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AppendOnlyViolation("Audit log entries cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AppendOnlyViolation("Audit log entries cannot be deleted")
