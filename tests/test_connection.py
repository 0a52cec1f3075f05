from types import SimpleNamespace

import psycopg
import pytest
from psycopg.conninfo import conninfo_to_dict

from config.config import DatabaseSettings
from metagdb.infrastructure.database.connection import connect
from metagdb.infrastructure.database.errors import StoreError


def test_connect_disables_autocommit(monkeypatch):
    calls = []
    fake = SimpleNamespace(info=SimpleNamespace(dbname="metagdb", user="metag"))

    def fake_connect(conninfo, **kwargs):
        calls.append((conninfo, kwargs))
        return fake

    monkeypatch.setattr(psycopg, "connect", fake_connect)

    assert connect(DatabaseSettings(host="db.local")) is fake
    conninfo, kwargs = calls[0]
    assert kwargs == {"autocommit": False}
    assert conninfo_to_dict(conninfo) == {"service": "metagdb", "host": "db.local"}


def test_connect_debug_failure_has_hint(monkeypatch):
    failure = psycopg.OperationalError('definition of service "debug" not found')

    def fake_connect(conninfo, **kwargs):
        assert conninfo_to_dict(conninfo) == {"service": "debug"}
        raise failure

    monkeypatch.setattr(psycopg, "connect", fake_connect)

    with pytest.raises(StoreError) as excinfo:
        connect(DatabaseSettings(), debug=True)

    assert "HINT: Did you create the service ->debug<-" in str(excinfo.value)
    assert excinfo.value.__cause__ is failure


def test_connect_failure_without_hint(monkeypatch):
    failure = psycopg.OperationalError("connection refused")

    def fake_connect(conninfo, **kwargs):
        raise failure

    monkeypatch.setattr(psycopg, "connect", fake_connect)

    with pytest.raises(StoreError) as excinfo:
        connect(DatabaseSettings())

    assert str(excinfo.value) == "connection refused"
    assert excinfo.value.__cause__ is failure
