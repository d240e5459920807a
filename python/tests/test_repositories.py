"""
Tests for the repository layer against an in-memory SQLite database.
"""

import pytest

from access_control import PUBLIC_SCOPE, RESEARCH_SCOPE
from database.models import AccessLevel, AuditAction, IPRStatus, KnowledgeType, User, UserRole
from database.repositories import (
    AuditRepository,
    DuplicateRecordError,
    KnowledgeFilters,
    KnowledgeRepository,
    UserRepository,
)
from conftest import LAKE_SEBU, days_ago

MOUNT_APO = "Bagobo-Tagabawa Community of Mount Apo"


@pytest.fixture
def records(session):
    return KnowledgeRepository(session)


@pytest.fixture
def users(session):
    return UserRepository(session)


class TestUserRepository:
    def test_get_by_login_matches_email_or_username(self, users, plain_user):
        assert users.get_by_login("juan").id == plain_user.id
        assert users.get_by_login(" JUAN@example.ph ").id == plain_user.id
        assert users.get_by_login("nobody") is None

    def test_exists(self, users, plain_user):
        assert users.exists("juan@example.ph", "someone-else")
        assert users.exists("other@example.ph", "juan")
        assert not users.exists("other@example.ph", "other")

    def test_duplicate_is_reported_cleanly(self, session, users, plain_user, password_hash):
        duplicate = User(
            username="juan",
            email="juan2@example.ph",
            password_hash=password_hash,
            role=UserRole.USER,
        )
        with pytest.raises(DuplicateRecordError) as exc_info:
            users.create(duplicate)
        assert str(exc_info.value) == "User with this email or username already exists"

    def test_touch_last_login(self, session, users, plain_user):
        assert plain_user.last_login is None
        users.touch_last_login(plain_user)
        session.commit()
        assert plain_user.last_login is not None


class TestListVisible:
    def test_public_scope(self, records, make_record):
        visible = make_record()
        make_record(access_level=AccessLevel.RESEARCHERS_ONLY)
        make_record(consent_obtained=False, access_level=AccessLevel.PRIVATE)

        found, total = records.list_visible(access_levels=PUBLIC_SCOPE, require_consent=True)
        assert total == 1
        assert [r.id for r in found] == [visible.id]

    def test_research_scope(self, records, make_record):
        make_record()
        make_record(access_level=AccessLevel.REGISTERED_USERS)
        make_record(access_level=AccessLevel.RESEARCHERS_ONLY)
        make_record(access_level=AccessLevel.COMMUNITY_ONLY)
        make_record(access_level=AccessLevel.RESTRICTED)

        _, total = records.list_visible(access_levels=RESEARCH_SCOPE, require_consent=True)
        assert total == 3

    def test_community_scope_ignores_level(self, records, make_record):
        make_record(access_level=AccessLevel.RESTRICTED)
        make_record(consent_obtained=False, access_level=AccessLevel.PRIVATE)
        make_record(community_name=MOUNT_APO, indigenous_group="Bagobo")

        _, total = records.list_visible(community=LAKE_SEBU)
        assert total == 2

    def test_archived_records_never_listed(self, records, make_record):
        make_record(is_active=False)
        _, total = records.list_visible()
        assert total == 0

    def test_filters_are_anded(self, records, make_record):
        make_record(knowledge_type=KnowledgeType.SPIRITUAL_USE)
        match = make_record(community_name=MOUNT_APO, indigenous_group="Bagobo")
        make_record(community_name=MOUNT_APO, indigenous_group="Bagobo", ipr_status=IPRStatus.PROTECTED)

        filters = KnowledgeFilters(community="mount apo", ipr_status=IPRStatus.PUBLIC_DOMAIN)
        found, total = records.list_visible(filters=filters)
        assert total == 1
        assert found[0].id == match.id

        filters = KnowledgeFilters(indigenous_group="t'boli", knowledge_type=KnowledgeType.SPIRITUAL_USE)
        _, total = records.list_visible(filters=filters)
        assert total == 1

    def test_consent_valid_filter(self, records, make_record):
        make_record()
        make_record(consent_expiry_date=days_ago(3))
        make_record(consent_obtained=False, access_level=AccessLevel.PRIVATE)

        _, total = records.list_visible(filters=KnowledgeFilters(consent_valid=True))
        assert total == 1

    def test_pagination(self, records, make_record):
        for _ in range(5):
            make_record()

        first, total = records.list_visible(offset=0, limit=2)
        last, _ = records.list_visible(offset=4, limit=2)
        assert total == 5
        assert len(first) == 2
        assert len(last) == 1
        assert last[0].id not in {r.id for r in first}


class TestSpecialisedListings:
    def test_public_collection(self, records, make_record):
        shown = make_record()
        make_record(ipr_status=IPRStatus.PROPRIETARY)
        make_record(access_level=AccessLevel.REGISTERED_USERS)
        make_record(is_active=False)

        assert [r.id for r in records.list_public()] == [shown.id]

    def test_public_collection_limit(self, records, make_record):
        for _ in range(3):
            make_record()
        assert len(records.list_public(limit=2)) == 2

    def test_by_community_is_case_insensitive_substring(self, records, make_record):
        make_record()
        make_record(community_name=MOUNT_APO, indigenous_group="Bagobo")
        assert len(records.list_by_community("lake sebu")) == 1
        assert len(records.list_by_community("Community")) == 2

    def test_by_community_exact(self, records, make_record):
        make_record()
        make_record(community_name="Lake Sebu", indigenous_group="T'boli")
        assert [r.community_name for r in records.list_by_community("Lake Sebu", exact=True)] == ["Lake Sebu"]
        assert records.list_by_community("lake sebu", exact=True) == []

    def test_pending_ipr_review(self, records, make_record):
        pending = make_record(access_level=AccessLevel.RESTRICTED, ipr_status=IPRStatus.PENDING_ASSESSMENT)
        make_record(
            consent_obtained=False,
            access_level=AccessLevel.PRIVATE,
            ipr_status=IPRStatus.PENDING_ASSESSMENT,
        )
        make_record()

        assert [r.id for r in records.list_pending_ipr_review()] == [pending.id]


class TestAccessLog:
    def test_append_and_read(self, session, records, make_record, researcher):
        record = make_record()
        records.append_access(record, researcher.id, "Study")
        records.append_access(record, None, "View")
        session.commit()

        entries = records.get_access_log(record.id)
        assert [e.purpose for e in entries] == ["Study", "View"]
        assert entries[0].user_id == researcher.id
        assert entries[1].user_id is None
        assert all(e.approved for e in entries)
        assert len(entries) == 2

    def test_archive_hides_record(self, session, records, make_record):
        record = make_record()
        records.archive(record, "Duplicate entry")
        session.commit()

        assert records.get_active(record.id) is None
        assert record.archive_reason == "Duplicate entry"
        assert record.archived_at is not None


class TestAuditRepository:
    def test_log_and_search(self, session):
        audit = AuditRepository(session)
        audit.log(AuditAction.CREATE, "indigenous_knowledge", resource_id="rec-1", actor_id="u-1")
        audit.log(AuditAction.ARCHIVE, "indigenous_knowledge", resource_id="rec-1", actor_id="u-1")
        audit.log(AuditAction.LOGIN, "user", resource_id="u-2", actor_id="u-2")
        session.commit()

        logs, total = audit.search(resource_id="rec-1")
        assert total == 2
        assert {log.action for log in logs} == {AuditAction.CREATE, AuditAction.ARCHIVE}

        logs, total = audit.search(action=AuditAction.LOGIN)
        assert total == 1
        assert logs[0].actor_id == "u-2"
