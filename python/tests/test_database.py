"""
Unit tests for database models and schema.

Tests the SQLAlchemy ORM models, CHECK constraints and append-only tables
against an in-memory SQLite database.
"""

import re

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from database.models import (
    AccessLevel,
    AccessLogEntry,
    AppendOnlyViolation,
    AuditAction,
    AuditLog,
    IPRStatus,
    KnowledgeRecord,
    KnowledgeType,
    SensitivityLevel,
    User,
    UserRole,
    VerificationStatus,
    generate_consent_id,
)
from conftest import days_ago

CONSENT_ID = re.compile(r"^PIC-\d+-[A-Z0-9]{9}$")


class TestEnums:
    """Tests for enum values exposed through the API."""

    def test_access_levels_in_order(self):
        assert [level.value for level in AccessLevel] == [
            "public", "registered_users", "researchers_only",
            "community_only", "restricted", "private",
        ]

    def test_ipr_status_values(self):
        assert IPRStatus("pending_assessment") is IPRStatus.PENDING_ASSESSMENT
        assert IPRStatus.PUBLIC_DOMAIN.value == "public_domain"

    def test_knowledge_type_uses_display_names(self):
        assert KnowledgeType("Medicinal Use") is KnowledgeType.MEDICINAL_USE
        with pytest.raises(ValueError):
            KnowledgeType("Ritual Use")

    def test_user_roles(self):
        assert UserRole("indigenous_representative") is UserRole.INDIGENOUS_REPRESENTATIVE
        assert len(UserRole) == 7

    def test_audit_actions(self):
        assert AuditAction.REVOKE_CONSENT.value == "REVOKE_CONSENT"
        assert AuditAction.APPROVE_IPR.value == "APPROVE_IPR"


class TestSchema:
    """Tests for the created tables."""

    def test_tables_exist(self, engine):
        names = set(inspect(engine).get_table_names())
        assert {"users", "indigenous_knowledge", "knowledge_access_log", "audit_logs"} <= names

    def test_knowledge_record_columns(self, engine):
        columns = {c["name"] for c in inspect(engine).get_columns("indigenous_knowledge")}
        for name in (
            "consent_obtained", "consent_id", "consent_expiry_date", "consent_revoked_at",
            "ipr_status", "access_level", "is_active", "ncip_approved", "next_review_date",
        ):
            assert name in columns


class TestKnowledgeRecordDefaults:
    """Tests for defaults applied on insert."""

    def test_defaults(self, make_record):
        record = make_record(access_level=AccessLevel.RESTRICTED, ipr_status=IPRStatus.PENDING_ASSESSMENT)
        assert record.is_active is True
        assert record.verification_status is VerificationStatus.UNVERIFIED
        assert record.sensitivity_level is SensitivityLevel.MEDIUM
        assert record.plant_ids == []
        assert record.media == []
        assert record.ncip_approved is False
        assert record.created_at is not None

    def test_consent_id_assigned_when_consent_obtained(self, make_record):
        record = make_record()
        assert CONSENT_ID.match(record.consent_id)

    def test_supplied_consent_id_is_kept(self, make_record):
        record = make_record(consent_id="PIC-1-ABCDEFGHI")
        assert record.consent_id == "PIC-1-ABCDEFGHI"

    def test_no_consent_id_without_consent(self, make_record):
        record = make_record(consent_obtained=False, access_level=AccessLevel.PRIVATE)
        assert record.consent_id is None

    def test_generated_ids_are_unique(self):
        ids = {generate_consent_id() for _ in range(200)}
        assert len(ids) == 200
        assert all(CONSENT_ID.match(value) for value in ids)


class TestConsentConstraints:
    """Consent rules enforced by CHECK constraints."""

    def test_public_record_requires_consent(self, session, make_record):
        with pytest.raises(IntegrityError):
            make_record(consent_obtained=False, access_level=AccessLevel.PUBLIC)
        session.rollback()

    def test_private_record_without_consent_is_allowed(self, make_record):
        record = make_record(consent_obtained=False, access_level=AccessLevel.PRIVATE)
        assert record.access_level is AccessLevel.PRIVATE

    def test_revoked_record_must_be_private(self, session, make_record):
        with pytest.raises(IntegrityError):
            make_record(
                consent_obtained=False,
                access_level=AccessLevel.RESTRICTED,
                consent_revoked_at=days_ago(1),
            )
        session.rollback()

    def test_revoked_record_must_not_claim_consent(self, session, make_record):
        with pytest.raises(IntegrityError):
            make_record(
                consent_obtained=True,
                access_level=AccessLevel.PRIVATE,
                consent_revoked_at=days_ago(1),
            )
        session.rollback()

    def test_duplicate_consent_id(self, session, make_record):
        make_record(consent_id="PIC-1-AAAAAAAAA")
        with pytest.raises(IntegrityError):
            make_record(consent_id="PIC-1-AAAAAAAAA")
        session.rollback()


class TestAppendOnlyTables:
    """Access log and audit rows cannot change once written."""

    def test_access_log_entry_cannot_be_updated(self, session, make_record):
        record = make_record()
        entry = AccessLogEntry(record_id=record.id, user_id=None, purpose="View")
        session.add(entry)
        session.commit()

        entry.purpose = "Something else"
        with pytest.raises(AppendOnlyViolation):
            session.commit()
        session.rollback()

    def test_access_log_entry_cannot_be_deleted(self, session, make_record):
        record = make_record()
        entry = AccessLogEntry(record_id=record.id, user_id=None, purpose="View")
        session.add(entry)
        session.commit()

        session.delete(entry)
        with pytest.raises(AppendOnlyViolation):
            session.commit()
        session.rollback()

    def test_audit_log_cannot_be_deleted(self, session):
        log = AuditLog(action=AuditAction.LOGIN, resource_type="user", resource_id="u-1")
        session.add(log)
        session.commit()

        session.delete(log)
        with pytest.raises(AppendOnlyViolation):
            session.commit()
        session.rollback()

    def test_access_log_relationship(self, session, make_record):
        record = make_record()
        session.add_all([
            AccessLogEntry(record_id=record.id, purpose="View", accessed_at=days_ago(2)),
            AccessLogEntry(record_id=record.id, purpose="Study", accessed_at=days_ago(1)),
        ])
        session.commit()
        session.refresh(record)
        assert [entry.purpose for entry in record.access_log] == ["View", "Study"]


class TestUser:
    def test_full_name_falls_back_to_username(self, make_user):
        user = make_user(UserRole.USER, username="maria")
        assert user.full_name == "maria"
        user.first_name = "Maria"
        user.last_name = "Santos"
        assert user.full_name == "Maria Santos"

    def test_permission_flags_default_off(self, researcher):
        assert researcher.can_manage_ipr is False
        assert researcher.can_access_restricted_knowledge is False

    def test_username_is_unique(self, session, make_user):
        make_user(UserRole.USER, username="duplicate", email="one@example.ph")
        with pytest.raises(IntegrityError):
            make_user(UserRole.USER, username="duplicate", email="two@example.ph")
        session.rollback()

    def test_role_stored_as_value(self, session, representative):
        stored = session.execute(
            User.__table__.select().where(User.id == representative.id)
        ).mappings().one()
        assert stored["role"] == UserRole.INDIGENOUS_REPRESENTATIVE
        assert KnowledgeRecord.__table__.c.access_level.type.enums[0] == "public"
