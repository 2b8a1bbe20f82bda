from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from storefront.auth.jwt_handler import SESSION_PURPOSE, TokenIssuer, get_token_issuer
from storefront.core import config
from storefront.core.errors import ForbiddenError, InvalidTokenError, UnauthorizedError
from storefront.database import get_db
from storefront.models.user import User

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CallerIdentity:
    user_id: int


def extract_token(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    """Prefer the session cookie, fall back to an ``Authorization: Bearer`` header."""
    cookie_token = request.cookies.get(config.JWT_COOKIE_NAME)
    if cookie_token:
        return cookie_token
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return None


def get_current_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    tokens: TokenIssuer = Depends(get_token_issuer),
) -> CallerIdentity:
    token = extract_token(request, credentials)
    if not token:
        raise UnauthorizedError("Not authorized, no token")

    try:
        claims = tokens.verify_token(token, purpose=SESSION_PURPOSE)
        user_id = int(claims.subject)
    except (InvalidTokenError, ValueError) as exc:
        raise UnauthorizedError("Not authorized, token failed") from exc

    return CallerIdentity(user_id=user_id)


def require_admin(
    identity: CallerIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, identity.user_id)
    if user is None:
        raise UnauthorizedError("Not authorized, user not found")
    if not user.is_admin:
        raise ForbiddenError("Not authorized as an admin")
    return user
