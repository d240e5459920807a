"""
Tests for the session provider and database settings.
"""

import pytest
from sqlalchemy import func, select

from database import connection
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    close_db,
    create_test_provider,
    get_db,
    get_db_provider,
    init_db,
)
from database.models import User, UserRole


@pytest.fixture
def sqlite_file_url(tmp_path):
    return f"sqlite:///{tmp_path / 'registry.db'}"


@pytest.fixture
def global_provider(monkeypatch, sqlite_file_url):
    monkeypatch.setenv("DATABASE_URL", sqlite_file_url)
    close_db()
    yield
    close_db()


class TestDatabaseSettings:
    def test_database_url_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///registry.db")
        monkeypatch.setenv("DB_HOST", "db.internal")
        settings = DatabaseSettings.from_env()
        assert settings.url == "sqlite:///registry.db"
        assert settings.is_sqlite
        assert settings.engine_options() == {"echo": False}

    def test_url_assembled_from_parts(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_NAME", "registry")
        monkeypatch.setenv("DB_POOL_SIZE", "12")
        settings = DatabaseSettings.from_env()
        assert settings.url.startswith("postgresql+psycopg2://")
        assert settings.url.endswith("@db.internal:5432/registry")
        options = settings.engine_options()
        assert options["pool_size"] == 12
        assert options["pool_pre_ping"] is True


class TestSessionProvider:
    def test_uninitialized_provider_refuses_access(self):
        provider = DatabaseSessionProvider(settings=DatabaseSettings(url="sqlite://"))
        with pytest.raises(RuntimeError):
            provider.session_factory
        with pytest.raises(RuntimeError):
            provider.engine

    def test_session_scope_commits(self, db_provider, password_hash):
        with db_provider.session_scope() as session:
            session.add(User(username="scoped", email="scoped@example.ph", password_hash=password_hash))

        with db_provider.session_scope() as session:
            assert session.execute(select(func.count()).select_from(User)).scalar_one() == 1

    def test_session_scope_rolls_back_on_error(self, db_provider, password_hash):
        with pytest.raises(ValueError):
            with db_provider.session_scope() as session:
                session.add(User(username="lost", email="lost@example.ph", password_hash=password_hash))
                session.flush()
                raise ValueError("boom")

        with db_provider.session_scope() as session:
            assert session.execute(select(func.count()).select_from(User)).scalar_one() == 0

    def test_health_check(self, db_provider):
        assert db_provider.health_check() is True

    def test_get_session_closes(self, db_provider):
        sessions = db_provider.get_session()
        session = next(sessions)
        assert session.bind is db_provider.engine
        sessions.close()

    def test_file_backed_provider_creates_tables(self, sqlite_file_url):
        provider = create_test_provider(settings=DatabaseSettings(url=sqlite_file_url))
        provider.init()
        provider.create_tables()
        try:
            with provider.session_scope() as session:
                session.add(User(username="disk", email="disk@example.ph", password_hash="x",
                                 role=UserRole.RESEARCHER))
            with provider.session_scope() as session:
                assert session.execute(select(User.role)).scalar_one() is UserRole.RESEARCHER
        finally:
            provider.close()
        assert not provider.initialized


class TestGlobalProvider:
    def test_init_and_close(self, global_provider):
        provider = init_db()
        assert provider is get_db_provider()
        assert provider.initialized

        close_db()
        assert connection._db_provider is None

    def test_get_db_dependency(self, global_provider):
        init_db().create_tables()
        sessions = get_db()
        session = next(sessions)
        assert session.execute(select(func.count()).select_from(User)).scalar_one() == 0
        sessions.close()
