from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from parentauth.config import Settings
from parentauth.logging import get_logger
from parentauth.service.entropy import SecureRandom
from parentauth.service.errors import SessionNotFoundError
from parentauth.storage.common import Namespace, RecordStore
from parentauth.storage.models import Session, utcnow

logger = get_logger(__name__)

ACCESS_PREFIX = "access_"
REFRESH_PREFIX = "refresh_"
# Reverse index rows live next to the sessions they point at
REFRESH_INDEX_PREFIX = "refresh:"
TOKEN_BYTES = 32


def refresh_index_key(refresh_token: str) -> str:
    return f"{REFRESH_INDEX_PREFIX}{refresh_token}"


def is_index_key(key: str) -> bool:
    return key.startswith(REFRESH_INDEX_PREFIX)


class SessionEngine:
    """Issue, look up, rotate and revoke session tokens.

    Rows are keyed by access token. Every write of a row also writes (or
    removes) its ``refresh:<token>`` index entry in the same batch, so
    rotation resolves a refresh token without scanning the namespace.
    Expiry is lazy: an expired row is deleted when it is next read.
    """

    def __init__(
        self,
        store: RecordStore,
        random: SecureRandom,
        *,
        ttl: timedelta = timedelta(days=7),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.random = random
        self.ttl = ttl
        self._clock = clock or utcnow

    @classmethod
    def from_settings(
        cls,
        store: RecordStore,
        random: SecureRandom,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "SessionEngine":
        return cls(store, random, ttl=timedelta(days=settings.session_ttl_days), clock=clock)

    def now(self) -> datetime:
        return self._clock()

    def _new_session(self, account_id: str, device_fingerprint: str) -> Session:
        now = self.now()
        return Session(
            access_token=ACCESS_PREFIX + self.random.token_urlsafe(TOKEN_BYTES),
            refresh_token=REFRESH_PREFIX + self.random.token_urlsafe(TOKEN_BYTES),
            account_id=account_id,
            device_fingerprint=device_fingerprint,
            created_at=now,
            expires_at=now + self.ttl,
        )

    def _delete_rows(self, session: Session) -> None:
        self.store.write_batch(
            Namespace.SESSIONS,
            deletes=[session.access_token, refresh_index_key(session.refresh_token)],
        )

    def issue(self, account_id: str, device_fingerprint: str) -> Session:
        session = self._new_session(account_id, device_fingerprint)
        self.store.write_batch(
            Namespace.SESSIONS,
            sets={
                session.access_token: session.to_record(),
                refresh_index_key(session.refresh_token): {
                    "access_token": session.access_token
                },
            },
        )
        logger.info(
            "session_issued",
            account_email=account_id,
            expires_at=session.expires_at.isoformat(),
        )
        return session

    def _load(self, access_token: str) -> Optional[Session]:
        if not access_token or is_index_key(access_token):
            return None
        data = self.store.get(Namespace.SESSIONS, access_token)
        if data is None:
            return None
        return Session.from_record(data)

    def lookup(self, access_token: str) -> Optional[Session]:
        session = self._load(access_token)
        if session is None:
            return None
        if session.is_expired(self.now()):
            self._delete_rows(session)
            logger.info("session_expired_on_read", account_email=session.account_id)
            return None
        return session

    def _find_by_refresh(self, refresh_token: str) -> Optional[Session]:
        index = self.store.get(Namespace.SESSIONS, refresh_index_key(refresh_token))
        if index is not None:
            session = self._load(index.get("access_token", ""))
            if session is not None and session.refresh_token == refresh_token:
                return session
            # Dangling index entry; the row it pointed at is gone
            self.store.delete(Namespace.SESSIONS, refresh_index_key(refresh_token))
            return None
        # Rows written before the index existed
        for key, data in self.store.get_all(Namespace.SESSIONS).items():
            if is_index_key(key):
                continue
            if data.get("refresh_token") == refresh_token:
                return Session.from_record(data)
        return None

    def rotate(self, refresh_token: str) -> Session:
        """Retire the session holding ``refresh_token`` and issue its successor.

        The old access token stops working immediately; there is no grace
        period.

        Raises:
            SessionNotFoundError: unknown or expired refresh token.
        """
        if not refresh_token:
            raise SessionNotFoundError("Refresh token is required")
        current = self._find_by_refresh(refresh_token)
        if current is None:
            raise SessionNotFoundError("Session not found")
        if current.is_expired(self.now()):
            self._delete_rows(current)
            raise SessionNotFoundError("Session expired")

        successor = self._new_session(current.account_id, current.device_fingerprint)
        self.store.write_batch(
            Namespace.SESSIONS,
            sets={
                successor.access_token: successor.to_record(),
                refresh_index_key(successor.refresh_token): {
                    "access_token": successor.access_token
                },
            },
            deletes=[current.access_token, refresh_index_key(current.refresh_token)],
        )
        logger.info("session_rotated", account_email=current.account_id)
        return successor

    def revoke(self, access_token: str) -> None:
        if not access_token or is_index_key(access_token):
            return
        session = self._load(access_token)
        if session is None:
            return
        self._delete_rows(session)
        logger.info("session_revoked", account_email=session.account_id)

    def list_sessions(self, account_id: Optional[str] = None) -> List[Session]:
        sessions = [
            Session.from_record(data)
            for key, data in self.store.get_all(Namespace.SESSIONS).items()
            if not is_index_key(key)
        ]
        if account_id is not None:
            sessions = [s for s in sessions if s.account_id == account_id]
        return sessions

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every expired row and index entry; returns rows removed."""
        now = now or self.now()
        rows = self.store.get_all(Namespace.SESSIONS)
        live_access = {
            key for key, data in rows.items()
            if not is_index_key(key) and not Session.from_record(data).is_expired(now)
        }
        deletes = []
        purged = 0
        for key, data in rows.items():
            if is_index_key(key):
                if data.get("access_token") not in live_access:
                    deletes.append(key)
            elif key not in live_access:
                deletes.append(key)
                purged += 1
        if deletes:
            self.store.write_batch(Namespace.SESSIONS, deletes=deletes)
        return purged


__all__ = [
    "SessionEngine",
    "is_index_key",
    "refresh_index_key",
]
