"""
Shared fixtures: in-memory SQLite database, configuration, accounts, records.
"""

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from access_control import Principal
from auth import create_access_token, hash_password
from config_manager import ConfigManager
from database.connection import create_test_provider
from database.models import (
    AccessLevel,
    Base,
    IPRStatus,
    KnowledgeRecord,
    KnowledgeType,
    User,
    UserRole,
)
from security_logger import get_security_logger, reset_security_logger

TEST_PASSWORD = "secret123"
LAKE_SEBU = "T'boli Community of Lake Sebu"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Fresh config singleton and a security log under tmp_path for every test."""
    for name in ("JWT_SECRET", "REDIS_URL", "RATE_LIMIT_ENABLED", "LOG_LEVEL", "CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    ConfigManager.reset_instance()
    reset_security_logger()
    get_security_logger(log_dir=str(tmp_path / "security"))
    yield
    reset_security_logger()
    ConfigManager.reset_instance()


@pytest.fixture
def config(tmp_path):
    """Defaults only; no config.yaml, no environment."""
    return ConfigManager.create(str(tmp_path / "absent.yaml"))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    provider = create_test_provider(engine)
    provider.init()
    return provider


@pytest.fixture
def session(db_provider):
    session = db_provider.session_factory()
    yield session
    session.close()


@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def make_user(session, password_hash):
    counter = {"n": 0}

    def _make(role=UserRole.USER, community=None, **fields):
        counter["n"] += 1
        username = fields.pop("username", f"{role.value}{counter['n']}")
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.ph"),
            password_hash=password_hash,
            role=role,
            affiliation_community=community,
            **fields
        )
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture
def make_record(session):
    def _make(**fields):
        values = dict(
            community_name=LAKE_SEBU,
            indigenous_group="T'boli",
            knowledge_type=KnowledgeType.MEDICINAL_USE,
            traditional_knowledge={"description": "Leaf decoction for fever"},
            consent_obtained=True,
            access_level=AccessLevel.PUBLIC,
            ipr_status=IPRStatus.PUBLIC_DOMAIN,
            recorded_by={"name": "Field Researcher", "affiliation": "UP Mindanao", "role": "researcher"},
        )
        values.update(fields)
        record = KnowledgeRecord(**values)
        session.add(record)
        session.commit()
        return record

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, username="admin", email="admin@halamanggaling.ph")


@pytest.fixture
def researcher(make_user):
    return make_user(UserRole.RESEARCHER, username="researcher01")


@pytest.fixture
def representative(make_user):
    return make_user(
        UserRole.INDIGENOUS_REPRESENTATIVE,
        community=LAKE_SEBU,
        username="tboli_rep",
        affiliation_group="T'boli",
    )


@pytest.fixture
def plain_user(make_user):
    return make_user(UserRole.USER, username="juan")


@pytest.fixture
def token_for(config):
    def _token(user, expires_delta=None):
        return create_access_token(
            subject=str(user.id),
            username=user.username,
            role=UserRole(user.role).value,
            expires_delta=expires_delta,
            config=config.auth,
        )

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers


def principal_for(user) -> Principal:
    return Principal.from_user(user)


def days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


def random_id() -> str:
    return str(uuid.uuid4())
