"""
Access evaluation for indigenous-knowledge records

Every rule about who may see, edit, revoke or audit a knowledge record lives
here as a plain function of (principal, record). Nothing in this module
touches the database or HTTP; records are read through their attributes
(``access_level``, ``community_name``, ``consent_obtained``,
``consent_revoked_at``, ``consent_expiry_date``) so ORM rows and simple
stand-ins work the same.

View rules, first match wins:
    1. admin
    2. can_access_restricted_knowledge permission
    -- consent must be valid for everything below --
    3. indigenous representative of the record's own community
    4. public
    5. registered_users, any authenticated principal
    6. researchers_only, researcher / reviewer / editor / admin
    7. community_only, affiliation matches the record's community
    8. deny (restricted and private end up here)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from database.models import AccessLevel, UserRole

logger = logging.getLogger(__name__)

# Permission flag names, mirrored by the boolean columns on ``User``
CAN_REVIEW = "can_review"
CAN_EDIT = "can_edit"
CAN_APPROVE = "can_approve"
CAN_ACCESS_RESTRICTED_KNOWLEDGE = "can_access_restricted_knowledge"
CAN_MANAGE_IPR = "can_manage_ipr"

PERMISSIONS = (
    CAN_REVIEW,
    CAN_EDIT,
    CAN_APPROVE,
    CAN_ACCESS_RESTRICTED_KNOWLEDGE,
    CAN_MANAGE_IPR,
)

RESEARCH_ROLES = frozenset({
    UserRole.RESEARCHER, UserRole.REVIEWER, UserRole.EDITOR, UserRole.ADMIN
})
CREATOR_ROLES = frozenset({
    UserRole.RESEARCHER, UserRole.INDIGENOUS_REPRESENTATIVE, UserRole.ADMIN
})
# roles whose listing is unrestricted once they hold can_access_restricted_knowledge
UNRESTRICTED_LISTING_ROLES = frozenset({
    UserRole.ADMIN, UserRole.EDITOR, UserRole.REVIEWER
})

ANONYMOUS_ROLE = "anonymous"

PUBLIC_SCOPE = frozenset({AccessLevel.PUBLIC})
RESEARCH_SCOPE = frozenset({
    AccessLevel.PUBLIC, AccessLevel.REGISTERED_USERS, AccessLevel.RESEARCHERS_ONLY
})


# ============================================
# ERRORS
# ============================================

class AuthorizationError(Exception):
    """Authenticated (or anonymous) caller may not perform the action.

    Carries enough detail for a 403 response that tells the caller what
    level the record requires and why the request was refused.
    """

    def __init__(
        self,
        message: str,
        reason: str = "forbidden",
        user_role: str = ANONYMOUS_ROLE,
        required_level: Optional[str] = None,
        consent_obtained: Optional[bool] = None,
        consent_revoked: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.user_role = user_role
        self.required_level = required_level
        self.consent_obtained = consent_obtained
        self.consent_revoked = consent_revoked

    @classmethod
    def from_decision(cls, decision: 'AccessDecision') -> 'AuthorizationError':
        if decision.reason in (DenialReason.NOT_OBTAINED, DenialReason.REVOKED, DenialReason.EXPIRED):
            message = "Access denied: prior informed consent is not valid for this record"
        else:
            message = "Access denied: insufficient access level for this record"
        return cls(
            message,
            reason=decision.reason.value if decision.reason else "forbidden",
            user_role=decision.user_role,
            required_level=decision.required_level.value,
            consent_obtained=decision.consent_obtained,
            consent_revoked=decision.consent_revoked
        )

    def to_details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {"reason": self.reason, "userRole": self.user_role}
        if self.required_level is not None:
            details["required"] = self.required_level
        if self.consent_obtained is not None:
            details["consentObtained"] = self.consent_obtained
        if self.consent_revoked is not None:
            details["consentRevoked"] = self.consent_revoked
        return details


class RecordValidationError(ValueError):
    """One or more fields of a record or request are invalid.

    ``errors`` lists every failing field, not just the first.
    """

    def __init__(self, errors: List[Dict[str, str]], message: str = "Validation failed"):
        super().__init__(message)
        self.message = message
        self.errors = errors


# ============================================
# PRINCIPAL
# ============================================

@dataclass(frozen=True)
class Principal:
    """Whoever is making the request; ``role is None`` means anonymous"""
    user_id: Optional[str] = None
    role: Optional[UserRole] = None
    username: str = ""
    community: Optional[str] = None
    indigenous_group: Optional[str] = None
    permissions: FrozenSet[str] = frozenset()

    @classmethod
    def anonymous(cls) -> 'Principal':
        return cls()

    @classmethod
    def from_user(cls, user) -> 'Principal':
        """Build a principal from a ``database.models.User`` row"""
        granted = frozenset(name for name in PERMISSIONS if getattr(user, name, False))
        return cls(
            user_id=str(user.id),
            role=UserRole(user.role),
            username=user.username,
            community=user.affiliation_community,
            indigenous_group=user.affiliation_group,
            permissions=granted
        )

    @property
    def is_authenticated(self) -> bool:
        return self.role is not None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def role_label(self) -> str:
        return self.role.value if self.role is not None else ANONYMOUS_ROLE

    def has_permission(self, name: str) -> bool:
        """Admin holds every permission implicitly"""
        return self.is_admin or name in self.permissions

    def represents(self, community_name: Optional[str]) -> bool:
        """True for an indigenous representative affiliated with ``community_name``"""
        return (
            self.role == UserRole.INDIGENOUS_REPRESENTATIVE
            and bool(self.community)
            and self.community == community_name
        )


# ============================================
# CONSENT
# ============================================

class ConsentStatus(str, Enum):
    VALID = "valid"
    NOT_OBTAINED = "not_obtained"
    REVOKED = "revoked"
    EXPIRED = "expired"


class DenialReason(str, Enum):
    NOT_OBTAINED = "not_obtained"
    REVOKED = "revoked"
    EXPIRED = "expired"
    INSUFFICIENT_ACCESS_LEVEL = "insufficient_access_level"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as SQLite returns them) as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def consent_status(record, now: Optional[datetime] = None) -> ConsentStatus:
    """Checks run in a fixed order: not obtained, revoked, expired."""
    if not record.consent_obtained:
        return ConsentStatus.NOT_OBTAINED
    if record.consent_revoked_at is not None:
        # unreachable for rows satisfying the invariants; revocation clears consent_obtained
        return ConsentStatus.REVOKED
    expiry = as_utc(record.consent_expiry_date)
    if expiry is not None:
        now = as_utc(now) or datetime.now(timezone.utc)
        if now > expiry:
            return ConsentStatus.EXPIRED
    return ConsentStatus.VALID


def is_consent_valid(record, now: Optional[datetime] = None) -> bool:
    return consent_status(record, now) is ConsentStatus.VALID


# ============================================
# VIEW DECISION
# ============================================

@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a view evaluation"""
    allowed: bool
    rule: str
    required_level: AccessLevel
    user_role: str
    consent_obtained: bool
    consent_revoked: bool
    reason: Optional[DenialReason] = None


def evaluate_view(principal: Principal, record, now: Optional[datetime] = None) -> AccessDecision:
    """Decide whether ``principal`` may read ``record``."""
    level = AccessLevel(record.access_level)

    def decide(allowed: bool, rule: str, reason: Optional[DenialReason] = None) -> AccessDecision:
        return AccessDecision(
            allowed=allowed,
            rule=rule,
            required_level=level,
            user_role=principal.role_label,
            consent_obtained=bool(record.consent_obtained),
            consent_revoked=record.consent_revoked_at is not None,
            reason=reason
        )

    if principal.is_admin:
        return decide(True, "admin")
    if CAN_ACCESS_RESTRICTED_KNOWLEDGE in principal.permissions:
        return decide(True, "restricted_knowledge_permission")

    status = consent_status(record, now)
    if status is not ConsentStatus.VALID:
        return decide(False, "consent", DenialReason(status.value))

    if principal.represents(record.community_name):
        return decide(True, "community_owner")
    if level == AccessLevel.PUBLIC:
        return decide(True, "public")
    if level == AccessLevel.REGISTERED_USERS and principal.is_authenticated:
        return decide(True, "registered_users")
    if level == AccessLevel.RESEARCHERS_ONLY and principal.role in RESEARCH_ROLES:
        return decide(True, "researchers_only")
    if (
        level == AccessLevel.COMMUNITY_ONLY
        and principal.community
        and principal.community == record.community_name
    ):
        return decide(True, "community_only")

    return decide(False, "default_deny", DenialReason.INSUFFICIENT_ACCESS_LEVEL)


def can_view(principal: Principal, record, now: Optional[datetime] = None) -> bool:
    return evaluate_view(principal, record, now).allowed


# ============================================
# OTHER ACTIONS
# ============================================

def can_create(principal: Principal, community_name: Optional[str]) -> bool:
    """Researchers and admins anywhere; representatives for their own community"""
    if principal.role not in CREATOR_ROLES:
        return False
    if principal.role == UserRole.INDIGENOUS_REPRESENTATIVE:
        return principal.represents(community_name)
    return True


def can_edit(principal: Principal, record, new_community: Optional[str] = None) -> bool:
    """Admin, researcher, or the representative of the record's community.

    A representative moving a record to another community must represent
    that community too.
    """
    if principal.role in (UserRole.ADMIN, UserRole.RESEARCHER):
        return True
    if not principal.represents(record.community_name):
        return False
    return new_community is None or principal.represents(new_community)


def can_revoke(principal: Principal, record) -> bool:
    return (
        principal.is_admin
        or principal.represents(record.community_name)
        or principal.has_permission(CAN_MANAGE_IPR)
    )


def can_view_access_log(principal: Principal, record) -> bool:
    return can_revoke(principal, record)


def can_manage_ipr(principal: Principal) -> bool:
    return principal.has_permission(CAN_MANAGE_IPR)


def can_archive(principal: Principal) -> bool:
    return principal.is_admin


def can_view_audit_trail(principal: Principal) -> bool:
    return principal.is_admin


def can_view_community(principal: Principal, community_name: str) -> bool:
    if principal.has_permission(CAN_ACCESS_RESTRICTED_KNOWLEDGE):
        return True
    return bool(principal.community) and principal.community == community_name


def community_search_is_exact(principal: Principal) -> bool:
    """Affiliation-only callers match their own community name exactly, not as a substring."""
    return not principal.has_permission(CAN_ACCESS_RESTRICTED_KNOWLEDGE)


# ============================================
# LISTING SCOPE
# ============================================

@dataclass(frozen=True)
class VisibilityScope:
    """Role-based restriction applied before any user-supplied filter.

    ``access_levels`` of None means every level is visible.
    """
    access_levels: Optional[FrozenSet[AccessLevel]] = None
    require_consent: bool = False
    community: Optional[str] = None

    @property
    def unrestricted(self) -> bool:
        return self.access_levels is None and not self.require_consent and self.community is None


def visibility_scope(principal: Principal) -> VisibilityScope:
    """Base listing filter for ``principal``.

    Raises:
        AuthorizationError: representative without a community affiliation
    """
    if principal.is_admin:
        return VisibilityScope()
    if principal.role == UserRole.INDIGENOUS_REPRESENTATIVE:
        if not principal.community:
            raise AuthorizationError(
                "Indigenous representative account has no community affiliation",
                reason="no_affiliation",
                user_role=principal.role_label
            )
        return VisibilityScope(community=principal.community)
    if principal.role in UNRESTRICTED_LISTING_ROLES and principal.has_permission(CAN_ACCESS_RESTRICTED_KNOWLEDGE):
        return VisibilityScope()
    if principal.role in RESEARCH_ROLES:
        return VisibilityScope(access_levels=RESEARCH_SCOPE, require_consent=True)
    return VisibilityScope(access_levels=PUBLIC_SCOPE, require_consent=True)


# ============================================
# MUTATIONS
# ============================================

def apply_consent_revocation(record, reason: str, now: Optional[datetime] = None) -> bool:
    """Revoke consent in place.

    Returns False and leaves the record untouched when it was already
    revoked; the first revocation time and reason are kept.
    """
    if record.consent_revoked_at is not None:
        return False
    record.consent_obtained = False
    record.consent_revoked_at = now or datetime.now(timezone.utc)
    record.consent_revoked_reason = reason
    record.access_level = AccessLevel.PRIVATE
    return True


def check_record_invariants(record) -> None:
    """Raise RecordValidationError listing every consent invariant the record breaks."""
    errors = []
    level = AccessLevel(record.access_level)
    if not record.consent_obtained and level != AccessLevel.PRIVATE:
        errors.append({
            "field": "accessLevel",
            "message": "accessLevel must be private while consent is not obtained"
        })
    if record.consent_revoked_at is not None:
        if record.consent_obtained:
            errors.append({
                "field": "consent.obtained",
                "message": "revoked consent cannot be marked obtained"
            })
        if level != AccessLevel.PRIVATE:
            errors.append({
                "field": "accessLevel",
                "message": "a record with revoked consent must be private"
            })
    if errors:
        raise RecordValidationError(errors, message="Record violates consent invariants")
