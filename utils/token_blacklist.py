# utils/token_blacklist.py
"""
SECURITY: revocation list for JWT access tokens.

Access tokens are stateless, so logout, account deactivation and password
changes register the token's `jti` here until its natural expiry.

Two layers:
1. In-memory cache (fast path for every request)
2. Database table `revoked_access_tokens` (survives restarts, shared
   between workers)
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from sqlalchemy.orm import Session

from utils.timezone import ensure_utc, get_utc_now

logger = logging.getLogger("security.token_blacklist")


class TokenBlacklist:
    """
    SECURITY: tracks revoked access token ids.

    Thread-safe; entries are dropped once the token would have expired anyway.
    """

    def __init__(self):
        # jti -> expiry
        self._revoked: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._last_cleanup = get_utc_now()
        self._cleanup_interval = timedelta(minutes=30)

    def revoke(self, jti: str, expires_at: Optional[datetime], db: Optional[Session] = None) -> bool:
        """
        Revokes a token id.

        Args:
            jti: JWT id claim
            expires_at: token expiry (None = 24h from now)
            db: when given, the revocation is persisted too

        Returns:
            True when the token was (or already is) unusable
        """
        if not jti:
            return False

        exp_time = ensure_utc(expires_at) or (get_utc_now() + timedelta(hours=24))
        if exp_time < get_utc_now():
            logger.debug("Token already expired, not blacklisted")
            return True

        with self._lock:
            self._revoked[jti] = exp_time
            self._maybe_cleanup()

        if db is not None:
            from auth.models import RevokedAccessToken
            if db.get(RevokedAccessToken, jti) is None:
                db.add(RevokedAccessToken(jti=jti, expires_at=exp_time))
                db.commit()

        logger.info(f"Access token revoked: {jti[:8]}...")
        return True

    def is_revoked(self, jti: Optional[str], db: Optional[Session] = None) -> bool:
        """Checks memory first, then the database when a session is given."""
        if not jti:
            return True

        with self._lock:
            if jti in self._revoked:
                return True

        if db is not None:
            from auth.models import RevokedAccessToken
            row = db.get(RevokedAccessToken, jti)
            if row is not None:
                with self._lock:
                    self._revoked[jti] = ensure_utc(row.expires_at)
                return True

        return False

    def _maybe_cleanup(self):
        """Drops expired ids. Called with the lock held."""
        now = get_utc_now()
        if now - self._last_cleanup < self._cleanup_interval:
            return

        expired = [jti for jti, exp in self._revoked.items() if exp < now]
        for jti in expired:
            del self._revoked[jti]
        self._last_cleanup = now
        logger.debug(f"Blacklist cleanup: {len(expired)} removed, {len(self._revoked)} kept")

    def cleanup_database(self, db: Session) -> int:
        """Deletes expired rows from `revoked_access_tokens`."""
        from auth.models import RevokedAccessToken
        deleted = (
            db.query(RevokedAccessToken)
            .filter(RevokedAccessToken.expires_at < get_utc_now())
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted

    def clear(self):
        """Empties the in-memory cache. Tests only."""
        with self._lock:
            self._revoked.clear()


_blacklist_instance: Optional[TokenBlacklist] = None
_instance_lock = threading.Lock()


def get_token_blacklist() -> TokenBlacklist:
    """Lazy thread-safe singleton."""
    global _blacklist_instance

    if _blacklist_instance is None:
        with _instance_lock:
            if _blacklist_instance is None:
                _blacklist_instance = TokenBlacklist()

    return _blacklist_instance
