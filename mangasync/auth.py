"""
Authentication context passed explicitly to the engine and the clients.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from mangasync.utils.dates import ensure_utc, utcnow


@dataclass(frozen=True)
class AuthContext:
    """
    Current user session.

    The engine only asks whether the session is usable and who the user
    is. A session without an expiry is treated as valid until the remote
    rejects it.
    """
    access_token: Optional[str] = None
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token or not self.user_id:
            return False
        if self.expires_at is None:
            return True
        return ensure_utc(self.expires_at) > ensure_utc(now or utcnow())

    @classmethod
    def anonymous(cls) -> "AuthContext":
        return cls()
