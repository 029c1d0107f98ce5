"""Tests for database layer (psycopg2 mocked, no real DB needed)."""

import os
from unittest.mock import MagicMock, patch

import pytest


class TestGetConn:
    def test_requires_database_url(self):
        from leasely.infra.db import get_conn

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()

    def test_sets_application_name(self):
        from leasely.infra.db import get_conn

        with patch.dict(os.environ, {"DATABASE_URL": "postgres://u:p@h/db"}, clear=True), \
             patch("leasely.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with(
                "postgres://u:p@h/db",
                application_name="leasely",
                options="-c lock_timeout=5000",
            )

    def test_lock_timeout_from_env(self):
        from leasely.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_LOCK_TIMEOUT_MS": "250"}
        with patch.dict(os.environ, env, clear=True), \
             patch("leasely.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            assert mock_connect.call_args.kwargs["options"] == "-c lock_timeout=250"

    def test_invalid_lock_timeout(self):
        from leasely.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_LOCK_TIMEOUT_MS": "soon"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(RuntimeError, match="DB_LOCK_TIMEOUT_MS"):
                get_conn()


class TestTxn:
    def test_commits_on_success(self):
        from leasely.infra.db import txn

        conn = MagicMock()
        with txn(conn) as cur:
            cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_not_called()

    def test_rolls_back_and_closes_owned_connection(self):
        from leasely.infra.db import txn

        conn = MagicMock()
        with patch("leasely.infra.db.get_conn", return_value=conn):
            with pytest.raises(ValueError):
                with txn():
                    raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()


class TestForUpdate:
    def test_appends_clause(self):
        from leasely.infra.db import for_update

        cur = MagicMock()
        for_update(cur, "SELECT id FROM bookings WHERE id = %s;", ("b1",), skip_locked=True)

        cur.execute.assert_called_once_with(
            "SELECT id FROM bookings WHERE id = %s FOR UPDATE SKIP LOCKED", ("b1",)
        )

    def test_nowait_and_skip_locked_exclusive(self):
        from leasely.infra.db import for_update

        with pytest.raises(ValueError):
            for_update(MagicMock(), "SELECT 1", nowait=True, skip_locked=True)
