"""Per-attempt login state for the social login (OAuth + PKCE) flow.

Each login attempt gets its own random correlation token (the OAuth
``state``) and PKCE verifier, so concurrent logins never share a verifier.
Attempts are single use and expire after ``ttl_seconds``.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from vaultswap.errors import NotFoundError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass
class LoginAttempt:
    state: str
    code_verifier: str
    code_challenge: str
    created_at: datetime
    expires_at: datetime
    user_id: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def public_dict(self) -> dict:
        """Fields safe to hand to the browser (no verifier)."""
        return {
            "state": self.state,
            "code_challenge": self.code_challenge,
            "code_challenge_method": "S256",
            "expires_at": self.expires_at.isoformat(),
        }


class LoginStateStore:
    """In-memory store of pending login attempts."""

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._attempts: dict[str, LoginAttempt] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    def begin(self, user_id: Optional[str] = None) -> LoginAttempt:
        self.prune()
        now = self._clock()
        verifier = secrets.token_urlsafe(64)
        attempt = LoginAttempt(
            state=secrets.token_urlsafe(32),
            code_verifier=verifier,
            code_challenge=pkce_challenge(verifier),
            created_at=now,
            expires_at=now + self.ttl,
            user_id=user_id,
        )
        self._attempts[attempt.state] = attempt
        return attempt

    def complete(self, state: str) -> LoginAttempt:
        """Take the attempt for ``state``; it cannot be completed twice.

        Raises:
            NotFoundError: unknown, already completed, or expired
        """
        attempt = self._attempts.pop(state, None)
        if attempt is None:
            raise NotFoundError("Login attempt not found or already completed")
        if attempt.is_expired(self._clock()):
            logger.info("Rejected expired login attempt")
            raise NotFoundError("Login attempt expired")
        return attempt

    def prune(self) -> None:
        now = self._clock()
        for state in [s for s, a in self._attempts.items() if a.is_expired(now)]:
            del self._attempts[state]
