"""Tests for the session store."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from samlgate.core.config import DatabaseSettings
from samlgate.core.errors import StoreUnavailable, StoreWriteFailed
from samlgate.core.saml.descriptors import AuthenticationRecord, hash_name_id
from samlgate.storage import SessionStore


def _record(name_id: str, session_index: str, auth_time: datetime) -> AuthenticationRecord:
    return AuthenticationRecord(
        name_id=hash_name_id(name_id),
        session_index=session_index,
        auth_time=auth_time,
    )


def test_store_inserts_row(session_store: SessionStore) -> None:
    """A first login creates the row."""
    now = datetime.now(UTC)
    session_store.store(_record("alice@example.com", "_s1", now))

    row = session_store.fetch(hash_name_id("alice@example.com"))
    assert row is not None
    assert row.session_index == "_s1"


def test_store_upserts_by_name_id(session_store: SessionStore) -> None:
    """A second login for the same subject replaces the session."""
    first = datetime.now(UTC) - timedelta(hours=1)
    second = datetime.now(UTC)
    session_store.store(_record("alice@example.com", "_s1", first))
    session_store.store(_record("alice@example.com", "_s2", second))

    sessions = session_store.list_sessions()
    assert len(sessions) == 1
    assert sessions[0].session_index == "_s2"
    assert sessions[0].auth_time.replace(tzinfo=None) == second.replace(tzinfo=None)


def test_list_sessions_most_recent_first(session_store: SessionStore) -> None:
    """Sessions are listed newest first and limited."""
    now = datetime.now(UTC)
    for index, name in enumerate(["a@x.test", "b@x.test", "c@x.test"]):
        session_store.store(_record(name, f"_s{index}", now + timedelta(minutes=index)))

    sessions = session_store.list_sessions(limit=2)
    assert [s.session_index for s in sessions] == ["_s2", "_s1"]


def test_fetch_unknown(session_store: SessionStore) -> None:
    """Unknown subjects have no row."""
    assert session_store.fetch(hash_name_id("nobody@example.com")) is None


def test_unavailable_store_is_generic(tmp_path: Path) -> None:
    """Connection failures hide driver details outside debug mode."""
    url = f"sqlite:///{tmp_path / 'missing-dir' / 'sessions.db'}"
    store = SessionStore(DatabaseSettings(url=url), debug=False)

    with pytest.raises(StoreUnavailable) as exc_info:
        store.store(_record("alice@example.com", "_s1", datetime.now(UTC)))
    assert exc_info.value.message == "Cannot connect to database for SAML session storage."


def test_unavailable_store_debug(tmp_path: Path) -> None:
    """In debug mode the driver message is reported."""
    url = f"sqlite:///{tmp_path / 'missing-dir' / 'sessions.db'}"
    store = SessionStore(DatabaseSettings(url=url), debug=True)

    with pytest.raises(StoreUnavailable) as exc_info:
        store.store(_record("alice@example.com", "_s1", datetime.now(UTC)))
    assert "unable to open database file" in exc_info.value.message


def test_write_failure_without_table(tmp_path: Path) -> None:
    """A reachable database without the table fails the upsert."""
    store = SessionStore(DatabaseSettings(url=f"sqlite:///{tmp_path / 'empty.db'}"))

    with pytest.raises(StoreWriteFailed) as exc_info:
        store.store(_record("alice@example.com", "_s1", datetime.now(UTC)))
    assert exc_info.value.message == "Cannot execute SQL statement for SAML session storage."
    store.close()
