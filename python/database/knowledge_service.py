"""
Database-backed Knowledge Service for HalamangGaling

Runs every indigenous-knowledge operation: it asks ``access_control`` for a
decision, reads and writes through the repositories, appends to the access
log and audit trail, and shapes records for the API.

Writes are committed here, once per operation. A failed commit is rolled
back and surfaced as ``StorageError``; it is never retried, since a retried
access-log append or revocation could double-log.

Usage:
    # With FastAPI
    @app.get("/api/indigenous-knowledge/{record_id}")
    def get_record(
        record_id: str,
        service: KnowledgeService = Depends(get_knowledge_service)
    ):
        return service.view_record(principal, record_id)

    # Standalone
    with db_provider.session_scope() as session:
        service = KnowledgeService(session, config)
        summaries = service.list_public()
"""

import logging
import math
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from access_control import (
    CREATOR_ROLES,
    AuthorizationError,
    Principal,
    RecordValidationError,
    apply_consent_revocation,
    as_utc,
    can_archive,
    can_create,
    can_edit,
    can_manage_ipr,
    can_revoke,
    can_view_access_log,
    can_view_audit_trail,
    can_view_community,
    check_record_invariants,
    community_search_is_exact,
    evaluate_view,
    visibility_scope,
)
from config_manager import ConfigManager, get_config
from database.models import (
    AccessLevel,
    AccessLogEntry,
    AuditAction,
    AuditLog,
    IPRStatus,
    KnowledgeRecord,
    KnowledgeType,
    SensitivityLevel,
    User,
    VerificationStatus,
)
from database.repositories import (
    AuditRepository,
    KnowledgeFilters,
    KnowledgeRepository,
    RecordNotFoundError,
    StorageError,
)
from log_utils import sanitize_for_logging
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "indigenous_knowledge"
NCIP = "National Commission on Indigenous Peoples"


# ============================================
# SERIALIZATION
# ============================================

def _camel(key: str) -> str:
    head, *rest = key.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def iso(value: Optional[datetime]) -> Optional[str]:
    """ISO 8601 in UTC, or None"""
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def to_document(value: Any) -> Any:
    """Convert request data (snake_case, datetimes, enums) to a stored JSON sub-document"""
    if isinstance(value, dict):
        return {_camel(k): to_document(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    if isinstance(value, datetime):
        return iso(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def serialize_consent(record: KnowledgeRecord, include_document: bool = True) -> Dict[str, Any]:
    consent = {
        "obtained": record.consent_obtained,
        "consentId": record.consent_id,
        "consentDate": iso(record.consent_date),
        "expiryDate": iso(record.consent_expiry_date),
        "scopeOfUse": list(record.consent_scope_of_use or []),
        "restrictions": record.consent_restrictions,
        "revocable": record.consent_revocable,
        "revokedAt": iso(record.consent_revoked_at),
        "revokedReason": record.consent_revoked_reason,
    }
    if include_document:
        consent["consentDocument"] = record.consent_document
        consent["witnesses"] = list(record.consent_witnesses or [])
    return consent


def serialize_ipr(record: KnowledgeRecord) -> Dict[str, Any]:
    return {
        "status": _enum_value(record.ipr_status),
        "registrationNumber": record.ipr_registration_number,
        "registeredWith": record.ipr_registered_with,
        "registrationDate": iso(record.ipr_registration_date),
        "protectionLevel": record.ipr_protection_level,
        "rightHolders": list(record.ipr_right_holders or []),
    }


def serialize_compliance(record: KnowledgeRecord) -> Dict[str, Any]:
    return {
        "ipraCompliant": record.ipra_compliant,
        "nagoyaCompliant": record.nagoya_compliant,
        "ncipApproved": record.ncip_approved,
        "lastReviewDate": iso(record.last_review_date),
        "nextReviewDate": iso(record.next_review_date),
    }


def serialize_community(record: KnowledgeRecord) -> Dict[str, Any]:
    return {
        "name": record.community_name,
        "indigenousGroup": record.indigenous_group,
        "location": record.location,
    }


def serialize_record(
    record: KnowledgeRecord,
    include_media: bool = True,
    include_consent_document: bool = True
) -> Dict[str, Any]:
    """Wire shape of a record. The access log is never part of it."""
    data = {
        "id": str(record.id),
        "community": serialize_community(record),
        "knowledgeType": _enum_value(record.knowledge_type),
        "plants": list(record.plant_ids or []),
        "traditionalKnowledge": record.traditional_knowledge,
        "consent": serialize_consent(record, include_document=include_consent_document),
        "ipr": serialize_ipr(record),
        "benefitSharing": record.benefit_sharing,
        "recordedBy": record.recorded_by,
        "recordingDate": iso(record.recording_date),
        "methodology": record.methodology,
        "knowledgeHolders": list(record.knowledge_holders or []),
        "verification": {
            "status": _enum_value(record.verification_status),
            **(record.verification_details or {}),
        },
        "accessLevel": _enum_value(record.access_level),
        "accessRestrictions": record.access_restrictions,
        "sensitivity": {
            "level": _enum_value(record.sensitivity_level),
            "reason": record.sensitivity_reason,
            "culturalSignificance": record.cultural_significance,
        },
        "relatedStudies": list(record.related_study_ids or []),
        "isActive": record.is_active,
        "archivedAt": iso(record.archived_at),
        "archiveReason": record.archive_reason,
        "compliance": serialize_compliance(record),
        "createdAt": iso(record.created_at),
        "updatedAt": iso(record.updated_at),
    }
    if include_media:
        data["media"] = list(record.media or [])
    return data


def serialize_summary(record: KnowledgeRecord) -> Dict[str, Any]:
    """List view: no media, no access log"""
    return serialize_record(record, include_media=False)


def serialize_access_entry(entry: AccessLogEntry) -> Dict[str, Any]:
    return {
        "user": str(entry.user_id) if entry.user_id else None,
        "accessDate": iso(entry.accessed_at),
        "purpose": entry.purpose,
        "approved": entry.approved,
    }


def serialize_audit_entry(log: AuditLog) -> Dict[str, Any]:
    return {
        "id": str(log.id),
        "timestamp": iso(log.timestamp),
        "action": _enum_value(log.action),
        "resourceType": log.resource_type,
        "resourceId": log.resource_id,
        "actor": {"id": log.actor_id, "name": log.actor_name, "role": log.actor_role},
        "details": log.details,
        "oldValue": log.old_value,
        "newValue": log.new_value,
        "success": log.success,
    }


def parse_record_id(record_id: Any) -> uuid.UUID:
    """Malformed ids are reported exactly like absent ones"""
    if isinstance(record_id, uuid.UUID):
        return record_id
    try:
        return uuid.UUID(str(record_id))
    except (ValueError, TypeError, AttributeError):
        raise RecordNotFoundError("Indigenous knowledge not found")


# ============================================
# SERVICE
# ============================================

class KnowledgeService:
    """
    Indigenous-knowledge operations for one database session.

    Follows the dependency injection pattern for testability: pass a session
    and, optionally, a ``ConfigManager``.
    """

    def __init__(self, session: Session, config: Optional[ConfigManager] = None):
        self.session = session
        self.config = config or get_config()
        self._records = KnowledgeRepository(session)
        self._audit = AuditRepository(session)

    # --------------------------------------------
    # helpers
    # --------------------------------------------

    @contextmanager
    def _transaction(self, action: str):
        """Commit once at the end; roll back and raise StorageError on database failure"""
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to {action}: {type(e).__name__}: {sanitize_for_logging(str(e))}")
            raise StorageError(f"Failed to {action}") from e

    def _get_record(self, record_id: Any) -> KnowledgeRecord:
        record = self._records.get_active(parse_record_id(record_id))
        if record is None:
            raise RecordNotFoundError("Indigenous knowledge not found")
        return record

    def _audit_log(
        self,
        principal: Principal,
        action: AuditAction,
        record: KnowledgeRecord,
        details: Optional[Dict[str, Any]] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None
    ) -> None:
        self._audit.log(
            action=action,
            resource_type=RESOURCE_TYPE,
            resource_id=str(record.id),
            actor_id=principal.user_id,
            actor_name=principal.username or None,
            actor_role=principal.role_label,
            details=details,
            old_value=old_value,
            new_value=new_value
        )

    def _denied(self, principal: Principal, message: str, reason: str, record=None) -> AuthorizationError:
        get_security_logger().log_access_denied(
            record_id=str(record.id) if record is not None else "",
            user_id=principal.user_id or "",
            user_role=principal.role_label,
            reason=reason,
            required_level=_enum_value(record.access_level) if record is not None else "",
            source="KnowledgeService"
        )
        return AuthorizationError(message, reason=reason, user_role=principal.role_label)

    def _clean_purpose(self, purpose: Optional[str]) -> str:
        cleaned = (purpose or "").strip()[:500]
        return cleaned or self.config.access.default_view_purpose

    # --------------------------------------------
    # reads
    # --------------------------------------------

    def view_record(self, principal: Principal, record_id: Any, purpose: Optional[str] = None) -> Dict[str, Any]:
        """
        Read one record and append an access-log entry.

        Every permitted read appends a new entry; repeated reads are logged
        repeatedly.

        Raises:
            RecordNotFoundError: absent, archived or malformed id
            AuthorizationError: consent invalid or access level too high
        """
        record = self._get_record(record_id)
        decision = evaluate_view(principal, record)

        if not decision.allowed:
            get_security_logger().log_access_denied(
                record_id=str(record.id),
                user_id=principal.user_id or "",
                user_role=decision.user_role,
                reason=decision.reason.value,
                required_level=decision.required_level.value,
                source="KnowledgeService.view_record"
            )
            raise AuthorizationError.from_decision(decision)

        purpose = self._clean_purpose(purpose)
        user_id = uuid.UUID(principal.user_id) if principal.user_id else None

        with self._transaction("record access"):
            self._records.append_access(record, user_id, purpose)

        if decision.required_level != AccessLevel.PUBLIC:
            get_security_logger().log_access_granted(
                record_id=str(record.id),
                user_id=principal.user_id or "",
                user_role=decision.user_role,
                access_level=decision.required_level.value,
                purpose=purpose,
                source="KnowledgeService.view_record"
            )

        logger.info(f"Record {record.id} viewed via rule '{decision.rule}' by {principal.role_label}")
        return serialize_record(record)

    def list_records(
        self,
        principal: Principal,
        filters: Optional[KnowledgeFilters] = None,
        page: int = 0
    ) -> Dict[str, Any]:
        """
        Role-scoped listing with user filters and zero-indexed pages.

        Returns:
            ``{"items": [...], "pagination": {total, page, limit, pages}}``
        """
        if page < 0:
            raise RecordValidationError([{"field": "page", "message": "page must be zero or greater"}])

        scope = visibility_scope(principal)
        limit = self.config.access.page_size

        records, total = self._records.list_visible(
            access_levels=scope.access_levels,
            require_consent=scope.require_consent,
            community=scope.community,
            filters=filters,
            offset=page * limit,
            limit=limit
        )

        return {
            "items": [serialize_summary(r) for r in records],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    def list_public(self) -> List[Dict[str, Any]]:
        """Public collection; consent documents and witnesses are withheld."""
        records = self._records.list_public(limit=self.config.access.public_list_limit)
        return [serialize_record(r, include_consent_document=False) for r in records]

    def list_by_community(self, principal: Principal, community_name: str) -> List[Dict[str, Any]]:
        if not can_view_community(principal, community_name):
            raise self._denied(principal, "Access denied to community knowledge", "not_community_member")
        exact = community_search_is_exact(principal)
        records = self._records.list_by_community(community_name, exact=exact)
        return [serialize_summary(r) for r in records]

    def get_access_log(self, principal: Principal, record_id: Any) -> Dict[str, Any]:
        record = self._get_record(record_id)
        if not can_view_access_log(principal, record):
            raise self._denied(principal, "Cannot view access log", "not_record_steward", record)

        entries = self._records.get_access_log(record.id)
        return {
            "community": serialize_community(record),
            "accessLog": [serialize_access_entry(e) for e in entries],
            "totalAccesses": len(entries),
        }

    def pending_ipr_review(self, principal: Principal) -> List[Dict[str, Any]]:
        if not can_manage_ipr(principal):
            raise self._denied(principal, "Access denied. Required permission: canManageIPR", "missing_permission")
        return [serialize_summary(r) for r in self._records.list_pending_ipr_review()]

    def audit_trail(
        self,
        principal: Principal,
        action: Optional[AuditAction] = None,
        resource_id: Optional[str] = None,
        page: int = 0
    ) -> Dict[str, Any]:
        """System-wide audit entries, newest first; admin only."""
        if not can_view_audit_trail(principal):
            raise self._denied(principal, "Access denied. Admin role required", "admin_only")
        if page < 0:
            raise RecordValidationError([{"field": "page", "message": "page must be zero or greater"}])

        limit = self.config.access.page_size
        logs, total = self._audit.search(
            action=action,
            resource_id=resource_id,
            offset=page * limit,
            limit=limit
        )
        return {
            "items": [serialize_audit_entry(log) for log in logs],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    # --------------------------------------------
    # writes
    # --------------------------------------------

    def create_record(self, principal: Principal, payload: Dict[str, Any], author: Optional[User] = None) -> Dict[str, Any]:
        """
        Create a record from request data (snake_case keys).

        Raises:
            AuthorizationError: role may not create, or representative of another community
            RecordValidationError: missing fields or consent not obtained
        """
        if principal.role not in CREATOR_ROLES:
            raise self._denied(
                principal,
                "Access denied. Required role: researcher or indigenous_representative or admin",
                "role_not_permitted"
            )

        self._validate_create(payload)

        community = payload["community"]
        if not can_create(principal, community.get("name")):
            raise self._denied(principal, "Can only create knowledge for your own community", "not_community_member")

        record = self._build_record(principal, payload, author)
        check_record_invariants(record)

        with self._transaction("create indigenous knowledge"):
            self._records.create(record)
            self._audit_log(
                principal, AuditAction.CREATE, record,
                new_value={"accessLevel": _enum_value(record.access_level), "consentId": record.consent_id}
            )

        logger.info(f"Created knowledge record {record.id} for {sanitize_for_logging(record.community_name)}")
        return serialize_record(record)

    def update_record(self, principal: Principal, record_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update. Consent, IPR, compliance, id, access log and
        active flag cannot be changed through this operation.
        """
        record = self._get_record(record_id)

        new_community = (changes.get("community") or {}).get("name")
        if not can_edit(principal, record, new_community):
            raise self._denied(principal, "Cannot edit this knowledge record", "not_record_editor", record)

        old_value = {"accessLevel": _enum_value(record.access_level), "community": record.community_name}
        self._apply_changes(record, changes)
        try:
            check_record_invariants(record)
        except RecordValidationError:
            self.session.rollback()
            raise

        with self._transaction("update indigenous knowledge"):
            self._audit_log(
                principal, AuditAction.UPDATE, record,
                details={"fields": sorted(changes.keys())},
                old_value=old_value,
                new_value={"accessLevel": _enum_value(record.access_level), "community": record.community_name}
            )

        return serialize_record(record)

    def revoke_consent(self, principal: Principal, record_id: Any, reason: Optional[str]) -> Dict[str, Any]:
        """
        One-way consent revocation; the record becomes private.

        Revoking an already-revoked record is a no-op that keeps the first
        revocation time and reason.
        """
        record = self._get_record(record_id)
        if not can_revoke(principal, record):
            raise self._denied(principal, "Cannot revoke consent for this knowledge", "not_record_steward", record)

        reason = (reason or "").strip()
        max_length = self.config.validation.reason_max_length
        if not reason:
            raise RecordValidationError([{"field": "reason", "message": "Reason for revocation is required"}])
        if len(reason) > max_length:
            raise RecordValidationError([{
                "field": "reason",
                "message": f"Reason must not exceed {max_length} characters"
            }])

        changed = apply_consent_revocation(record, reason)
        check_record_invariants(record)

        if changed:
            with self._transaction("revoke consent"):
                self._audit_log(
                    principal, AuditAction.REVOKE_CONSENT, record,
                    details={"reason": reason},
                    new_value={"accessLevel": AccessLevel.PRIVATE.value, "consentObtained": False}
                )
            get_security_logger().log_consent_revoked(
                record_id=str(record.id),
                user_id=principal.user_id or "",
                user_role=principal.role_label,
                reason=reason,
                source="KnowledgeService.revoke_consent"
            )
        else:
            logger.info(f"Consent for record {record.id} was already revoked")

        return {
            "consentStatus": serialize_consent(record),
            "accessLevel": _enum_value(record.access_level),
            "alreadyRevoked": not changed,
        }

    def approve_ipr(self, principal: Principal, record_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Record the outcome of an IPR assessment and mark the record compliant."""
        if not can_manage_ipr(principal):
            raise self._denied(principal, "Access denied. Required permission: canManageIPR", "missing_permission")

        record = self._get_record(record_id)
        now = datetime.now(timezone.utc)
        old_value = {"status": _enum_value(record.ipr_status)}

        if changes.get("ipr_status"):
            record.ipr_status = IPRStatus(changes["ipr_status"])
        if changes.get("registration_number"):
            record.ipr_registration_number = changes["registration_number"]
            record.ipr_registered_with = NCIP
            record.ipr_registration_date = now
        if changes.get("protection_level"):
            record.ipr_protection_level = changes["protection_level"]

        ncip_approved = changes.get("ncip_approved")
        record.ipra_compliant = True
        record.nagoya_compliant = True
        record.ncip_approved = True if ncip_approved is None else bool(ncip_approved)
        record.last_review_date = now
        record.next_review_date = now + timedelta(days=self.config.access.ipr_review_interval_days)

        with self._transaction("approve IPR"):
            self._audit_log(
                principal, AuditAction.APPROVE_IPR, record,
                old_value=old_value,
                new_value={"status": _enum_value(record.ipr_status), "ncipApproved": record.ncip_approved}
            )

        return {"ipr": serialize_ipr(record), "compliance": serialize_compliance(record)}

    def archive_record(self, principal: Principal, record_id: Any, reason: Optional[str] = None) -> Dict[str, Any]:
        """Soft delete. Archived records read as not found from then on."""
        if not can_archive(principal):
            raise self._denied(principal, "Access denied. Required role: admin", "role_not_permitted")

        record = self._get_record(record_id)
        with self._transaction("archive indigenous knowledge"):
            self._records.archive(record, (reason or "").strip() or None)
            self._audit_log(principal, AuditAction.ARCHIVE, record, details={"reason": record.archive_reason})

        return {"id": str(record.id), "isActive": False, "archivedAt": iso(record.archived_at)}

    # --------------------------------------------
    # payload handling
    # --------------------------------------------

    @staticmethod
    def _validate_create(payload: Dict[str, Any]) -> None:
        """Collect every missing or invalid field before rejecting"""
        errors = []
        community = payload.get("community") or {}
        if not (community.get("name") or "").strip():
            errors.append({"field": "community.name", "message": "community.name is required"})
        if not (community.get("indigenous_group") or "").strip():
            errors.append({"field": "community.indigenousGroup", "message": "community.indigenousGroup is required"})
        if not payload.get("knowledge_type"):
            errors.append({"field": "knowledgeType", "message": "knowledgeType is required"})
        knowledge = payload.get("traditional_knowledge") or {}
        if not (knowledge.get("description") or "").strip():
            errors.append({
                "field": "traditionalKnowledge.description",
                "message": "traditionalKnowledge.description is required"
            })
        consent = payload.get("consent")
        if not consent or consent.get("obtained") is not True:
            errors.append({
                "field": "consent.obtained",
                "message": "Prior Informed Consent (PIC) is required for indigenous knowledge"
            })
        if errors:
            raise RecordValidationError(errors)

    def _recorded_by(self, principal: Principal, author: Optional[User]) -> Dict[str, Any]:
        name = author.full_name if author is not None else (principal.username or "unknown")
        affiliation = (
            (author.institution if author is not None else None)
            or principal.community
            or "HalamangGaling"
        )
        return {"name": name, "affiliation": affiliation, "role": principal.role_label}

    def _build_record(self, principal: Principal, payload: Dict[str, Any], author: Optional[User]) -> KnowledgeRecord:
        now = datetime.now(timezone.utc)
        community = payload["community"]
        consent = payload["consent"]
        ipr = payload.get("ipr") or {}
        sensitivity = payload.get("sensitivity") or {}
        verification = dict(payload.get("verification") or {})
        verification_status = verification.pop("status", None) or VerificationStatus.UNVERIFIED

        return KnowledgeRecord(
            community_name=community["name"].strip(),
            indigenous_group=community["indigenous_group"].strip(),
            location=to_document(community.get("location")),
            knowledge_type=KnowledgeType(payload["knowledge_type"]),
            plant_ids=list(payload.get("plants") or []),
            related_study_ids=list(payload.get("related_studies") or []),
            traditional_knowledge=to_document(payload["traditional_knowledge"]),
            consent_obtained=True,
            consent_id=consent.get("consent_id"),
            consent_date=consent.get("consent_date"),
            consent_expiry_date=consent.get("expiry_date"),
            consent_scope_of_use=list(consent.get("scope_of_use") or []),
            consent_document=consent.get("consent_document"),
            consent_witnesses=to_document(consent.get("witnesses") or []),
            consent_restrictions=consent.get("restrictions"),
            consent_revocable=consent.get("revocable", True),
            ipr_status=IPRStatus(ipr.get("status") or IPRStatus.PENDING_ASSESSMENT),
            ipr_registration_number=ipr.get("registration_number"),
            ipr_registered_with=ipr.get("registered_with"),
            ipr_registration_date=ipr.get("registration_date"),
            ipr_protection_level=ipr.get("protection_level"),
            ipr_right_holders=to_document(ipr.get("right_holders") or []),
            benefit_sharing=to_document(payload.get("benefit_sharing")),
            recorded_by=self._recorded_by(principal, author),
            recording_date=now,
            methodology=payload.get("methodology"),
            knowledge_holders=to_document(payload.get("knowledge_holders") or []),
            verification_status=VerificationStatus(verification_status),
            verification_details=to_document(verification) or None,
            access_level=AccessLevel(payload.get("access_level") or self.config.access.default_access_level),
            access_restrictions=payload.get("access_restrictions"),
            sensitivity_level=SensitivityLevel(sensitivity.get("level") or SensitivityLevel.MEDIUM),
            sensitivity_reason=sensitivity.get("reason"),
            cultural_significance=sensitivity.get("cultural_significance"),
            media=to_document(payload.get("media") or []),
            ipra_compliant=False,
            nagoya_compliant=False,
            ncip_approved=False,
            last_review_date=now,
            created_by_id=uuid.UUID(principal.user_id) if principal.user_id else None,
        )

    @staticmethod
    def _apply_changes(record: KnowledgeRecord, changes: Dict[str, Any]) -> None:
        if changes.get("community"):
            community = changes["community"]
            record.community_name = community["name"].strip()
            record.indigenous_group = community["indigenous_group"].strip()
            if "location" in community:
                record.location = to_document(community["location"])
        if changes.get("knowledge_type"):
            record.knowledge_type = KnowledgeType(changes["knowledge_type"])
        if changes.get("plants") is not None:
            record.plant_ids = list(changes["plants"])
        if changes.get("related_studies") is not None:
            record.related_study_ids = list(changes["related_studies"])
        if changes.get("traditional_knowledge"):
            record.traditional_knowledge = to_document(changes["traditional_knowledge"])
        if "benefit_sharing" in changes:
            record.benefit_sharing = to_document(changes["benefit_sharing"])
        if "methodology" in changes:
            record.methodology = changes["methodology"]
        if changes.get("knowledge_holders") is not None:
            record.knowledge_holders = to_document(changes["knowledge_holders"])
        if changes.get("verification"):
            verification = dict(changes["verification"])
            status = verification.pop("status", None)
            if status:
                record.verification_status = VerificationStatus(status)
            record.verification_details = to_document(verification) or None
        if changes.get("access_level"):
            record.access_level = AccessLevel(changes["access_level"])
        if "access_restrictions" in changes:
            record.access_restrictions = changes["access_restrictions"]
        if changes.get("sensitivity"):
            sensitivity = changes["sensitivity"]
            if sensitivity.get("level"):
                record.sensitivity_level = SensitivityLevel(sensitivity["level"])
            record.sensitivity_reason = sensitivity.get("reason")
            record.cultural_significance = sensitivity.get("cultural_significance")
        if changes.get("media") is not None:
            record.media = to_document(changes["media"])
