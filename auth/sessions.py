"""
auth/sessions.py -- Server-side login sessions.

A session id is secrets.token_hex(32): 256 bits of entropy, stored in the
sessionId cookie and used as the refresh credential. Because the record lives
in the database, a session is revocable server-side, unlike a JWT.

Expiry is enforced lazily: get_session() deletes an expired row on read and
returns None. purge_expired() sweeps the rest and runs from the lifespan
background task in api/main.py and from `python main.py purge-sessions`.

The expiry check and the caller's subsequent use are not atomic. A session
that expires between the two allows at most one request past its nominal
expiry.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Engine

from auth.models import Session
from auth.schema import now_iso, to_iso, user_sessions

logger = logging.getLogger("keystone.auth.sessions")

DEFAULT_TTL_HOURS = 168


def _expiry(ttl_hours: int) -> str:
    if ttl_hours <= 0:
        raise ValueError("ttl_hours must be positive")
    return to_iso(datetime.now(timezone.utc) + timedelta(hours=ttl_hours))


class SessionStore:
    """Repository for Session records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_session(self, user_id: int, ttl_hours: int = DEFAULT_TTL_HOURS) -> Session:
        stamp = now_iso()
        session = Session(
            id=secrets.token_hex(32),
            user_id=user_id,
            expires_at=_expiry(ttl_hours),
            created_at=stamp,
            updated_at=stamp,
        )
        with self.engine.connect() as conn:
            conn.execute(
                user_sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=session.expires_at,
                    created_at=session.created_at,
                    updated_at=session.updated_at,
                )
            )
            conn.commit()
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Return the live session, or None. An expired row is deleted on read."""
        if not session_id:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(user_sessions.select().where(user_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if row.expires_at < now_iso():
            self.delete_session(session_id)
            return None
        return _row_to_session(row)

    def renew_session(self, session_id: str, ttl_hours: int = DEFAULT_TTL_HOURS) -> Session | None:
        """Slide the expiry forward. Never creates a session; None if absent or expired."""
        if self.get_session(session_id) is None:
            return None
        with self.engine.connect() as conn:
            result = conn.execute(
                user_sessions.update()
                .where(user_sessions.c.id == session_id)
                .values(expires_at=_expiry(ttl_hours), updated_at=now_iso())
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_session(session_id)

    def rotate_session(self, session_id: str, ttl_hours: int = DEFAULT_TTL_HOURS) -> Session | None:
        """Replace a live session with a fresh id. The old id stops working.

        The old row is deleted before the new one is issued; if the delete
        matches nothing (a concurrent refresh already consumed it) no new
        session is created, so one session id can be redeemed only once.
        """
        current = self.get_session(session_id)
        if current is None:
            return None
        if not self.delete_session(session_id):
            return None
        return self.create_session(current.user_id, ttl_hours)

    def delete_session(self, session_id: str) -> bool:
        """Delete one session. False if it did not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(user_sessions.delete().where(user_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def delete_all_sessions_for_account(self, user_id: int) -> bool:
        """Revoke every session of an account. True even when there were none."""
        with self.engine.connect() as conn:
            result = conn.execute(user_sessions.delete().where(user_sessions.c.user_id == user_id))
            conn.commit()
        logger.info("Revoked %d session(s) for user_id=%s", result.rowcount, user_id)
        return True

    def list_sessions_for_account(self, user_id: int) -> list[Session]:
        """Live sessions for an account, newest first. Expired rows are skipped, not deleted."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                user_sessions.select()
                .where((user_sessions.c.user_id == user_id) & (user_sessions.c.expires_at >= now_iso()))
                .order_by(user_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired(self) -> int:
        """Bulk-delete every session whose expiry has passed. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(user_sessions.delete().where(user_sessions.c.expires_at < now_iso()))
            conn.commit()
        return result.rowcount


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
