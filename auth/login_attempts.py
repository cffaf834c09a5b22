# auth/login_attempts.py
"""
SECURITY: per-email login throttling.

Complements the per-IP slowapi limit: after MAX_LOGIN_ATTEMPTS failures
inside LOGIN_LOCKOUT_MINUTES the email is locked until the window ends.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from config import MAX_LOGIN_ATTEMPTS, LOGIN_LOCKOUT_MINUTES
from utils.timezone import now_utc


class LoginAttemptTracker:

    def __init__(self, max_attempts: int = MAX_LOGIN_ATTEMPTS, window_minutes: int = LOGIN_LOCKOUT_MINUTES):
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        # email -> (failures, first failure)
        self._attempts: Dict[str, Tuple[int, datetime]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    def record_failure(self, email: str, now: Optional[datetime] = None) -> int:
        now = now or now_utc()
        key = self._key(email)
        with self._lock:
            count, first = self._attempts.get(key, (0, now))
            if now - first > self.window:
                count, first = 0, now
            count += 1
            self._attempts[key] = (count, first)
            return count

    def clear(self, email: str) -> None:
        with self._lock:
            self._attempts.pop(self._key(email), None)

    def retry_after_seconds(self, email: str, now: Optional[datetime] = None) -> Optional[int]:
        """Seconds until the email may try again, None when not locked."""
        now = now or now_utc()
        key = self._key(email)
        with self._lock:
            entry = self._attempts.get(key)
            if entry is None:
                return None
            count, first = entry
            unlock_at = first + self.window
            if now >= unlock_at:
                del self._attempts[key]
                return None
            if count < self.max_attempts:
                return None
            return max(1, int((unlock_at - now).total_seconds()))

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()


login_attempt_tracker = LoginAttemptTracker()
