"""Unit tests for auth/sessions.py -- server-side session lifecycle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.schema import to_iso, user_sessions, users
from auth.sessions import SessionStore
from auth.store import AccountStore


@pytest.fixture
def user_id(accounts: AccountStore) -> int:
    return accounts.create_account("sess@example.com", hashed_password="x").id


def _expire(engine, session_id: str) -> None:
    """Move a session's expiry into the past."""
    past = to_iso(datetime.now(timezone.utc) - timedelta(minutes=1))
    with engine.connect() as conn:
        conn.execute(user_sessions.update().where(user_sessions.c.id == session_id).values(expires_at=past))
        conn.commit()


def test_session_id_is_256_bit_hex(sessions: SessionStore, user_id: int):
    session = sessions.create_session(user_id)
    assert len(session.id) == 64
    int(session.id, 16)
    assert sessions.create_session(user_id).id != session.id


def test_create_then_get(sessions: SessionStore, user_id: int):
    session = sessions.create_session(user_id, ttl_hours=2)
    fetched = sessions.get_session(session.id)
    assert fetched == session


def test_nonpositive_ttl_rejected(sessions: SessionStore, user_id: int):
    with pytest.raises(ValueError):
        sessions.create_session(user_id, ttl_hours=0)


def test_get_unknown_session_returns_none(sessions: SessionStore):
    assert sessions.get_session("deadbeef") is None
    assert sessions.get_session("") is None


def test_expired_session_deleted_on_read(engine, sessions: SessionStore, user_id: int):
    session = sessions.create_session(user_id)
    _expire(engine, session.id)
    assert sessions.get_session(session.id) is None
    with engine.connect() as conn:
        assert conn.execute(user_sessions.select()).fetchall() == []


def test_renew_extends_expiry(engine, sessions: SessionStore, user_id: int):
    session = sessions.create_session(user_id, ttl_hours=1)
    renewed = sessions.renew_session(session.id, ttl_hours=48)
    assert renewed is not None
    assert renewed.expires_at > session.expires_at


def test_renew_never_creates(sessions: SessionStore):
    assert sessions.renew_session("missing") is None


def test_rotate_replaces_id(sessions: SessionStore, user_id: int):
    old = sessions.create_session(user_id)
    new = sessions.rotate_session(old.id)
    assert new is not None
    assert new.id != old.id
    assert new.user_id == user_id
    assert sessions.get_session(old.id) is None
    assert sessions.rotate_session(old.id) is None


def test_delete_session(sessions: SessionStore, user_id: int):
    session = sessions.create_session(user_id)
    assert sessions.delete_session(session.id) is True
    assert sessions.delete_session(session.id) is False


def test_delete_all_for_account(sessions: SessionStore, accounts: AccountStore, user_id: int):
    other = accounts.create_account("other@example.com").id
    sessions.create_session(user_id)
    sessions.create_session(user_id)
    kept = sessions.create_session(other)
    assert sessions.delete_all_sessions_for_account(user_id) is True
    assert sessions.list_sessions_for_account(user_id) == []
    assert sessions.get_session(kept.id) is not None
    assert sessions.delete_all_sessions_for_account(user_id) is True


def test_purge_expired_counts_only_expired(engine, sessions: SessionStore, user_id: int):
    live = sessions.create_session(user_id)
    for _ in range(3):
        _expire(engine, sessions.create_session(user_id).id)
    assert sessions.purge_expired() == 3
    assert sessions.purge_expired() == 0
    assert sessions.get_session(live.id) is not None


def test_sessions_cascade_with_account(engine, sessions: SessionStore, user_id: int):
    session = sessions.create_session(user_id)
    with engine.connect() as conn:
        conn.execute(users.delete().where(users.c.id == user_id))
        conn.commit()
    assert sessions.get_session(session.id) is None
