"""
Tests for the control-plane engine factory.
"""

from dataclasses import replace

import pytest
from sqlalchemy import text

from stockroom.config.settings import Settings
from stockroom.database.session import (
    control_plane_connect_args,
    create_control_plane_engine,
)


class TestControlPlaneConnectArgs:

    def test_postgres_gets_connect_and_statement_timeouts(self):
        args = control_plane_connect_args("postgresql://u:p@db/control", 3, 2500)
        assert args == {"connect_timeout": 3, "options": "-c statement_timeout=2500"}

    def test_zero_statement_timeout_disables_it(self):
        args = control_plane_connect_args("postgresql://u:p@db/control", 3, 0)
        assert args == {"connect_timeout": 3}

    def test_sqlite_uses_busy_timeout(self):
        args = control_plane_connect_args("sqlite://", 4, 2500)
        assert args == {"check_same_thread": False, "timeout": 4}

    def test_sqlite_engine_connects(self):
        engine = create_control_plane_engine("sqlite://", connect_timeout=1)
        try:
            with engine.connect() as conn:
                assert conn.execute(text("SELECT 1")).scalar() == 1
        finally:
            engine.dispose()


class TestDatabaseTimeoutSettings:

    def test_defaults_bound_queries(self):
        settings = Settings(jwt_secret="x" * 32)
        assert settings.database_connect_timeout_seconds == 5
        assert settings.database_statement_timeout_ms == 5000

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_CONNECT_TIMEOUT_SECONDS", "2")
        monkeypatch.setenv("DATABASE_STATEMENT_TIMEOUT_MS", "750")

        settings = Settings.from_env()

        assert settings.database_connect_timeout_seconds == 2
        assert settings.database_statement_timeout_ms == 750

    def test_negative_statement_timeout_rejected(self):
        with pytest.raises(ValueError):
            replace(Settings(jwt_secret="x" * 32), database_statement_timeout_ms=-1).validate()
