"""
Unit tests for the access evaluator.

Records are plain stand-ins; no database is involved.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from access_control import (
    CAN_ACCESS_RESTRICTED_KNOWLEDGE,
    CAN_MANAGE_IPR,
    PUBLIC_SCOPE,
    RESEARCH_SCOPE,
    AuthorizationError,
    ConsentStatus,
    DenialReason,
    Principal,
    RecordValidationError,
    apply_consent_revocation,
    can_archive,
    can_create,
    can_edit,
    can_manage_ipr,
    can_revoke,
    can_view,
    can_view_access_log,
    can_view_audit_trail,
    can_view_community,
    check_record_invariants,
    community_search_is_exact,
    consent_status,
    evaluate_view,
    visibility_scope,
)
from database.models import AccessLevel, UserRole

LAKE_SEBU = "T'boli Community of Lake Sebu"
NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def record(level=AccessLevel.PUBLIC, community=LAKE_SEBU, obtained=True, revoked_at=None, expiry=None):
    return SimpleNamespace(
        access_level=level,
        community_name=community,
        consent_obtained=obtained,
        consent_revoked_at=revoked_at,
        consent_expiry_date=expiry,
        consent_revoked_reason=None,
    )


def principal(role, community=None, permissions=()):
    return Principal(
        user_id="u-1",
        role=role,
        username=role.value,
        community=community,
        permissions=frozenset(permissions),
    )


ANONYMOUS = Principal.anonymous()
ADMIN = principal(UserRole.ADMIN)
USER = principal(UserRole.USER)
PROFESSIONAL = principal(UserRole.PROFESSIONAL)
RESEARCHER = principal(UserRole.RESEARCHER)
REVIEWER = principal(UserRole.REVIEWER)
REPRESENTATIVE = principal(UserRole.INDIGENOUS_REPRESENTATIVE, community=LAKE_SEBU)
OTHER_REPRESENTATIVE = principal(UserRole.INDIGENOUS_REPRESENTATIVE, community="Ifugao Community of Banaue")
MEMBER = principal(UserRole.USER, community=LAKE_SEBU)
STEWARD = principal(UserRole.RESEARCHER, permissions=[CAN_ACCESS_RESTRICTED_KNOWLEDGE])
IPR_MANAGER = principal(UserRole.REVIEWER, permissions=[CAN_MANAGE_IPR])


# ============================================
# CONSENT
# ============================================

class TestConsentStatus:
    """Consent validity checks run in a fixed order."""

    def test_valid_without_expiry(self):
        assert consent_status(record(), NOW) is ConsentStatus.VALID

    def test_not_obtained(self):
        assert consent_status(record(obtained=False, level=AccessLevel.PRIVATE), NOW) is ConsentStatus.NOT_OBTAINED

    def test_revoked_record_reports_not_obtained_first(self):
        """A revoked record also has consent_obtained false; that check wins."""
        revoked = record(obtained=False, revoked_at=NOW, level=AccessLevel.PRIVATE)
        assert consent_status(revoked, NOW) is ConsentStatus.NOT_OBTAINED

    def test_revoked_but_still_marked_obtained(self):
        inconsistent = record(obtained=True, revoked_at=NOW)
        assert consent_status(inconsistent, NOW) is ConsentStatus.REVOKED

    def test_expired(self):
        assert consent_status(record(expiry=NOW - timedelta(days=1)), NOW) is ConsentStatus.EXPIRED

    def test_expiry_in_future_is_valid(self):
        assert consent_status(record(expiry=NOW + timedelta(days=1)), NOW) is ConsentStatus.VALID

    def test_naive_expiry_treated_as_utc(self):
        naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
        assert consent_status(record(expiry=naive), NOW) is ConsentStatus.EXPIRED


# ============================================
# VIEW
# ============================================

class TestEvaluateView:
    """First matching rule decides."""

    def test_admin_sees_private_record_without_consent(self):
        decision = evaluate_view(ADMIN, record(AccessLevel.PRIVATE, obtained=False), NOW)
        assert decision.allowed
        assert decision.rule == "admin"

    def test_restricted_permission_bypasses_consent(self):
        decision = evaluate_view(STEWARD, record(AccessLevel.RESTRICTED, expiry=NOW - timedelta(days=3)), NOW)
        assert decision.allowed
        assert decision.rule == "restricted_knowledge_permission"

    def test_consent_gate_blocks_representative_of_own_community(self):
        expired = record(AccessLevel.COMMUNITY_ONLY, expiry=NOW - timedelta(days=1))
        decision = evaluate_view(REPRESENTATIVE, expired, NOW)
        assert not decision.allowed
        assert decision.reason is DenialReason.EXPIRED

    def test_representative_sees_restricted_record_of_own_community(self):
        decision = evaluate_view(REPRESENTATIVE, record(AccessLevel.RESTRICTED), NOW)
        assert decision.allowed
        assert decision.rule == "community_owner"

    def test_representative_of_other_community_denied(self):
        decision = evaluate_view(OTHER_REPRESENTATIVE, record(AccessLevel.COMMUNITY_ONLY), NOW)
        assert not decision.allowed
        assert decision.reason is DenialReason.INSUFFICIENT_ACCESS_LEVEL

    def test_anonymous_sees_public(self):
        assert can_view(ANONYMOUS, record(AccessLevel.PUBLIC), NOW)

    def test_anonymous_denied_registered_users(self):
        decision = evaluate_view(ANONYMOUS, record(AccessLevel.REGISTERED_USERS), NOW)
        assert not decision.allowed
        assert decision.user_role == "anonymous"
        assert decision.required_level is AccessLevel.REGISTERED_USERS

    def test_any_account_sees_registered_users(self):
        assert can_view(USER, record(AccessLevel.REGISTERED_USERS), NOW)
        assert can_view(PROFESSIONAL, record(AccessLevel.REGISTERED_USERS), NOW)

    @pytest.mark.parametrize("role", [UserRole.RESEARCHER, UserRole.REVIEWER, UserRole.EDITOR])
    def test_research_roles_see_researchers_only(self, role):
        assert can_view(principal(role), record(AccessLevel.RESEARCHERS_ONLY), NOW)

    def test_user_denied_researchers_only(self):
        assert not can_view(USER, record(AccessLevel.RESEARCHERS_ONLY), NOW)

    def test_affiliated_member_sees_community_only(self):
        decision = evaluate_view(MEMBER, record(AccessLevel.COMMUNITY_ONLY), NOW)
        assert decision.allowed
        assert decision.rule == "community_only"

    def test_researcher_denied_community_only(self):
        assert not can_view(RESEARCHER, record(AccessLevel.COMMUNITY_ONLY), NOW)

    @pytest.mark.parametrize("level", [AccessLevel.RESTRICTED, AccessLevel.PRIVATE])
    def test_restricted_and_private_default_deny(self, level):
        decision = evaluate_view(RESEARCHER, record(level), NOW)
        assert not decision.allowed
        assert decision.rule == "default_deny"

    def test_revoked_public_record_denied_to_everyone_but_bypass(self):
        revoked = record(AccessLevel.PRIVATE, obtained=False, revoked_at=NOW)
        assert not can_view(ANONYMOUS, revoked, NOW)
        assert not can_view(REPRESENTATIVE, revoked, NOW)
        assert can_view(ADMIN, revoked, NOW)

    @pytest.mark.parametrize("level", list(AccessLevel))
    @pytest.mark.parametrize("obtained,expiry", [
        (True, None),
        (True, NOW - timedelta(days=1)),
        (False, None),
    ])
    def test_more_privilege_never_loses_access(self, level, obtained, expiry):
        if not obtained:
            level = AccessLevel.PRIVATE
        target = record(level, obtained=obtained, expiry=expiry)
        ladder = [ANONYMOUS, USER, RESEARCHER, STEWARD, ADMIN]
        granted = [can_view(p, target, NOW) for p in ladder]
        # once a rung is granted, every rung above it is too
        assert granted == sorted(granted)

    def test_decision_carries_consent_flags(self):
        decision = evaluate_view(USER, record(AccessLevel.PRIVATE, obtained=False, revoked_at=NOW), NOW)
        assert decision.consent_obtained is False
        assert decision.consent_revoked is True


class TestAuthorizationError:
    def test_from_consent_decision(self):
        decision = evaluate_view(USER, record(expiry=NOW - timedelta(days=1)), NOW)
        error = AuthorizationError.from_decision(decision)
        details = error.to_details()
        assert details["reason"] == "expired"
        assert details["required"] == "public"
        assert details["userRole"] == "user"
        assert details["consentObtained"] is True
        assert details["consentRevoked"] is False
        assert "consent" in error.message

    def test_from_level_decision(self):
        decision = evaluate_view(ANONYMOUS, record(AccessLevel.RESEARCHERS_ONLY), NOW)
        error = AuthorizationError.from_decision(decision)
        assert error.reason == "insufficient_access_level"
        assert error.to_details()["userRole"] == "anonymous"


# ============================================
# OTHER ACTIONS
# ============================================

class TestActionRules:
    def test_can_create(self):
        assert can_create(ADMIN, "Anywhere")
        assert can_create(RESEARCHER, "Anywhere")
        assert can_create(REPRESENTATIVE, LAKE_SEBU)
        assert not can_create(REPRESENTATIVE, "Ifugao Community of Banaue")
        assert not can_create(USER, LAKE_SEBU)
        assert not can_create(REVIEWER, LAKE_SEBU)
        assert not can_create(ANONYMOUS, LAKE_SEBU)

    def test_can_edit(self):
        target = record(AccessLevel.RESTRICTED)
        assert can_edit(ADMIN, target)
        assert can_edit(RESEARCHER, target)
        assert can_edit(REPRESENTATIVE, target)
        assert can_edit(REPRESENTATIVE, target, new_community=LAKE_SEBU)
        assert not can_edit(REPRESENTATIVE, target, new_community="Ifugao Community of Banaue")
        assert not can_edit(OTHER_REPRESENTATIVE, target)
        assert not can_edit(REVIEWER, target)

    def test_can_revoke_and_view_access_log(self):
        target = record()
        for allowed in (ADMIN, REPRESENTATIVE, IPR_MANAGER):
            assert can_revoke(allowed, target)
            assert can_view_access_log(allowed, target)
        for denied in (RESEARCHER, OTHER_REPRESENTATIVE, USER, ANONYMOUS):
            assert not can_revoke(denied, target)
            assert not can_view_access_log(denied, target)

    def test_ipr_and_archive(self):
        assert can_manage_ipr(ADMIN)
        assert can_manage_ipr(IPR_MANAGER)
        assert not can_manage_ipr(RESEARCHER)
        assert can_archive(ADMIN)
        assert not can_archive(IPR_MANAGER)

    def test_can_view_community(self):
        assert can_view_community(ADMIN, LAKE_SEBU)
        assert can_view_community(STEWARD, LAKE_SEBU)
        assert can_view_community(REPRESENTATIVE, LAKE_SEBU)
        assert can_view_community(MEMBER, LAKE_SEBU)
        assert not can_view_community(REPRESENTATIVE, "T'boli")
        assert not can_view_community(RESEARCHER, LAKE_SEBU)

    def test_community_search_is_exact_for_affiliation_only(self):
        assert community_search_is_exact(MEMBER)
        assert community_search_is_exact(REPRESENTATIVE)
        assert not community_search_is_exact(STEWARD)
        assert not community_search_is_exact(ADMIN)

    def test_audit_trail_is_admin_only(self):
        assert can_view_audit_trail(ADMIN)
        assert not can_view_audit_trail(STEWARD)
        assert not can_view_audit_trail(IPR_MANAGER)


class TestVisibilityScope:
    def test_admin_is_unrestricted(self):
        assert visibility_scope(ADMIN).unrestricted

    @pytest.mark.parametrize("role", [UserRole.EDITOR, UserRole.REVIEWER])
    def test_editorial_roles_with_restricted_permission_are_unrestricted(self, role):
        holder = principal(role, permissions=[CAN_ACCESS_RESTRICTED_KNOWLEDGE])
        assert visibility_scope(holder).unrestricted

    def test_researcher_keeps_research_scope_despite_permission(self):
        scope = visibility_scope(STEWARD)
        assert scope.access_levels == RESEARCH_SCOPE
        assert scope.require_consent

    @pytest.mark.parametrize("role", [UserRole.USER, UserRole.PROFESSIONAL])
    def test_plain_roles_keep_public_scope_despite_permission(self, role):
        holder = principal(role, permissions=[CAN_ACCESS_RESTRICTED_KNOWLEDGE])
        scope = visibility_scope(holder)
        assert scope.access_levels == PUBLIC_SCOPE
        assert scope.require_consent

    def test_representative_with_permission_stays_in_community(self):
        holder = principal(
            UserRole.INDIGENOUS_REPRESENTATIVE, community=LAKE_SEBU,
            permissions=[CAN_ACCESS_RESTRICTED_KNOWLEDGE]
        )
        assert visibility_scope(holder).community == LAKE_SEBU

    def test_representative_confined_to_community(self):
        scope = visibility_scope(REPRESENTATIVE)
        assert scope.community == LAKE_SEBU
        assert scope.access_levels is None
        assert scope.require_consent is False

    def test_representative_without_affiliation_rejected(self):
        with pytest.raises(AuthorizationError) as exc_info:
            visibility_scope(principal(UserRole.INDIGENOUS_REPRESENTATIVE))
        assert exc_info.value.reason == "no_affiliation"

    def test_research_roles(self):
        scope = visibility_scope(REVIEWER)
        assert scope.access_levels == RESEARCH_SCOPE
        assert scope.require_consent

    def test_everyone_else_sees_public_only(self):
        for who in (ANONYMOUS, USER, PROFESSIONAL):
            scope = visibility_scope(who)
            assert scope.access_levels == PUBLIC_SCOPE
            assert scope.require_consent


# ============================================
# MUTATIONS
# ============================================

class TestRevocation:
    def test_revocation_forces_private(self):
        target = record(AccessLevel.PUBLIC)
        assert apply_consent_revocation(target, "Community withdrew consent", NOW) is True
        assert target.consent_obtained is False
        assert target.consent_revoked_at == NOW
        assert target.consent_revoked_reason == "Community withdrew consent"
        assert target.access_level is AccessLevel.PRIVATE
        check_record_invariants(target)

    def test_second_revocation_keeps_first(self):
        target = record(AccessLevel.PUBLIC)
        apply_consent_revocation(target, "first", NOW)
        assert apply_consent_revocation(target, "second", NOW + timedelta(days=1)) is False
        assert target.consent_revoked_at == NOW
        assert target.consent_revoked_reason == "first"


class TestRecordInvariants:
    def test_consistent_record_passes(self):
        check_record_invariants(record(AccessLevel.RESTRICTED))
        check_record_invariants(record(AccessLevel.PRIVATE, obtained=False))

    def test_no_consent_requires_private(self):
        with pytest.raises(RecordValidationError) as exc_info:
            check_record_invariants(record(AccessLevel.PUBLIC, obtained=False))
        assert exc_info.value.errors[0]["field"] == "accessLevel"

    def test_every_violation_reported(self):
        broken = record(AccessLevel.PUBLIC, obtained=True, revoked_at=NOW)
        with pytest.raises(RecordValidationError) as exc_info:
            check_record_invariants(broken)
        fields = [e["field"] for e in exc_info.value.errors]
        assert fields == ["consent.obtained", "accessLevel"]
