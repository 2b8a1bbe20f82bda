"""Signed, time-limited tokens for sessions and password resets."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable

import jwt

from storefront.core import config
from storefront.core.errors import InvalidTokenError

SESSION_PURPOSE = "session"
RESET_PURPOSE = "reset"
RESET_TOKEN_EXPIRES_MINUTES = 15


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    purpose: str | None
    issued_at: datetime | None
    expires_at: datetime


class TokenIssuer:
    """Issues and verifies JWTs signed with an explicitly supplied key.

    ``clock`` only affects the ``iat``/``exp`` claims written at issue time;
    verification always checks expiry against the real current time.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        session_expires_minutes: int = 1440,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("A signing key is required to issue tokens.")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.session_expires_minutes = session_expires_minutes
        self._clock = clock

    def _encode(self, subject: str, purpose: str, expires_minutes: int) -> str:
        issued_at = self._clock()
        payload = {
            "sub": subject,
            "purpose": purpose,
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=expires_minutes),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue_session_token(self, user_id: int) -> str:
        return self._encode(str(user_id), SESSION_PURPOSE, self.session_expires_minutes)

    def issue_reset_token(self, user_id: int) -> str:
        return self._encode(str(user_id), RESET_PURPOSE, RESET_TOKEN_EXPIRES_MINUTES)

    def verify_token(self, token: str, purpose: str | None = None) -> TokenClaims:
        """Decode ``token`` and return its claims.

        Raises :class:`InvalidTokenError` for a bad signature, malformed
        payload, expiry, missing subject, or when ``purpose`` is given and the
        token was minted for something else. Callers still have to compare
        ``subject`` with the identity they expect.
        """
        if not token:
            raise InvalidTokenError()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("Token expired.") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError() from exc

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidTokenError()

        token_purpose = payload.get("purpose")
        if purpose is not None and token_purpose != purpose:
            raise InvalidTokenError()

        issued_at = payload.get("iat")
        return TokenClaims(
            subject=subject,
            purpose=token_purpose,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc) if issued_at is not None else None,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


@lru_cache
def get_token_issuer() -> TokenIssuer:
    return TokenIssuer(
        secret_key=config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
        session_expires_minutes=config.JWT_EXPIRES_MINUTES,
    )
