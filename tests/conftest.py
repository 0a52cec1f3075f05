import os
from types import SimpleNamespace

import psycopg
import pytest


class RecordingCursor:
    """Cursor double that records rendered statements and replays scripted rows."""

    connection = None

    def __init__(self, results=(), fail_with=None):
        self.results = [list(r) for r in results]
        self.fail_with = fail_with
        self.executed = []
        self.closed = False
        self._rows = []

    def execute(self, query, params=None):
        text = query.as_string(None) if hasattr(query, "as_string") else query
        self.executed.append((text, params))
        if self.fail_with is not None:
            raise self.fail_with
        self._rows = self.results.pop(0) if self.results else []
        return self

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True
        return False


class RecordingConnection:
    def __init__(self, results=(), fail_with=None, user="tester"):
        self.cursor_obj = RecordingCursor(results, fail_with=fail_with)
        self.info = SimpleNamespace(user=user, dbname="test")
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return self.cursor_obj

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture
def recording_conn():
    def make(results=(), fail_with=None, user="tester"):
        return RecordingConnection(results, fail_with=fail_with, user=user)
    return make


@pytest.fixture
def pg_conn():
    """Live PostgreSQL connection, rolled back after the test."""
    dsn = os.environ.get("METAGDB_TEST_DSN")
    if not dsn:
        pytest.skip("METAGDB_TEST_DSN not set")
    conn = psycopg.connect(dsn, autocommit=False)
    try:
        yield conn
    finally:
        conn.rollback()
        conn.close()
