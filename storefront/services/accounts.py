"""Account lifecycle: registration, login, profiles, admin management and password recovery."""

import html
import logging
from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.auth.jwt_handler import RESET_PURPOSE, TokenIssuer, get_token_issuer
from storefront.auth.passwords import hash_password, verify_password
from storefront.core import config
from storefront.core.errors import (
    ConflictError,
    DatabaseUnavailableError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from storefront.database import get_db
from storefront.models.user import User
from storefront.services.mailer import MailDispatcher, MailMessage, get_mailer

logger = logging.getLogger(__name__)

USER_EXISTS_MESSAGE = 'User already exists. Please choose a different email.'
USER_NOT_FOUND_MESSAGE = 'User not found!'
INVALID_RESET_TOKEN_MESSAGE = 'Invalid or expired token'


def normalize_email(email: str | None) -> str:
    return (email or '').strip().lower()


def _clean(value: str | None) -> str | None:
    """Blank strings count as "not provided" for partial updates."""
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class AuthenticatedUser:
    user: User
    token: str


class AccountService:
    def __init__(
        self,
        db: Session,
        tokens: TokenIssuer,
        mailer: MailDispatcher,
        frontend_url: str = config.FRONTEND_URL,
        store_name: str = config.STORE_NAME,
        email_from: str = config.EMAIL_FROM,
    ) -> None:
        self.db = db
        self.tokens = tokens
        self.mailer = mailer
        self.frontend_url = frontend_url.rstrip('/')
        self.store_name = store_name
        self.email_from = email_from

    def _commit(self, user: User | None = None) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(USER_EXISTS_MESSAGE) from exc
        except (OperationalError, InterfaceError) as exc:
            self.db.rollback()
            raise DatabaseUnavailableError() from exc
        except SQLAlchemyError:
            self.db.rollback()
            raise
        if user is not None:
            self.db.refresh(user)

    def _find_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email).first()

    def _get_or_404(self, user_id: int, message: str = USER_NOT_FOUND_MESSAGE) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(message)
        return user

    def _ensure_email_available(self, email: str, user: User) -> None:
        if email == user.email:
            return
        existing = self._find_by_email(email)
        if existing is not None and existing.id != user.id:
            raise ConflictError(USER_EXISTS_MESSAGE)

    def register(self, name: str, email: str, password: str) -> AuthenticatedUser:
        name = (name or '').strip()
        email = normalize_email(email)
        logger.info('Register attempt for email: %s', email)

        if not name or not email or not password:
            raise ValidationError('Please provide name, email, and password.')

        # Advisory only; the unique constraint on users.email is what actually
        # rejects concurrent duplicates (see _commit).
        if self._find_by_email(email) is not None:
            raise ConflictError(USER_EXISTS_MESSAGE)

        user = User(name=name, email=email, password_hash=hash_password(password), is_admin=False)
        self.db.add(user)
        self._commit(user)

        logger.info('Registered user %s', user.id)
        return AuthenticatedUser(user=user, token=self.tokens.issue_session_token(user.id))

    def login(self, email: str, password: str) -> AuthenticatedUser:
        email = normalize_email(email)
        logger.info('Login attempt for email: %s', email)

        if not email or not password:
            raise ValidationError('Please provide both email and password.')

        user = self._find_by_email(email)
        if user is None:
            raise NotFoundError('Invalid email address. Please check your email and try again.')

        if not verify_password(password, user.password_hash):
            raise UnauthorizedError('Invalid password. Please check your password and try again.')

        return AuthenticatedUser(user=user, token=self.tokens.issue_session_token(user.id))

    def get_profile(self, user_id: int) -> User:
        return self._get_or_404(user_id)

    def update_profile(
        self,
        user_id: int,
        name: str | None = None,
        email: str | None = None,
        password: str | None = None,
    ) -> User:
        user = self._get_or_404(user_id, 'User not found. Unable to update profile.')

        name = _clean(name)
        email = _clean(normalize_email(email)) if email is not None else None

        if name:
            user.name = name
        if email:
            self._ensure_email_available(email, user)
            user.email = email
        if password:
            user.password_hash = hash_password(password)

        self._commit(user)
        return user

    def _list_by_admin_flag(self, is_admin: bool, empty_message: str) -> list[User]:
        users = self.db.query(User).filter(User.is_admin.is_(is_admin)).order_by(User.id.asc()).all()
        if not users:
            raise NotFoundError(empty_message)
        return users

    def list_non_admins(self) -> list[User]:
        return self._list_by_admin_flag(False, 'No users found!')

    def list_admins(self) -> list[User]:
        return self._list_by_admin_flag(True, 'No admins found!')

    def get_by_id(self, user_id: int) -> User:
        return self._get_or_404(user_id)

    def delete(self, user_id: int) -> None:
        user = self._get_or_404(user_id)
        self.db.delete(user)
        self._commit()
        logger.info('Deleted user %s', user_id)

    def admin_update(
        self,
        user_id: int,
        name: str | None = None,
        email: str | None = None,
        is_admin: bool | None = None,
    ) -> User:
        user = self._get_or_404(user_id)

        name = _clean(name)
        email = _clean(normalize_email(email)) if email is not None else None

        if name:
            user.name = name
        if email:
            self._ensure_email_available(email, user)
            user.email = email
        if is_admin is not None:
            user.is_admin = bool(is_admin)

        self._commit(user)
        return user

    def build_reset_link(self, user_id: int, token: str) -> str:
        return f'{self.frontend_url}/reset-password/{user_id}/{token}'

    def build_reset_message(self, user: User, link: str) -> MailMessage:
        name = html.escape(user.name)
        store = html.escape(self.store_name)
        body = (
            f'<p>Hi {name},</p>'
            '<p>We received a password reset request for your account. '
            'Click the link below to set a new password:</p>'
            f'<p><a href="{link}" target="_blank">{link}</a></p>'
            "<p>If you didn't request this, you can ignore this email.</p>"
            f'<p>Thanks,<br>{store} Team</p>'
        )
        return MailMessage(
            sender=f'"{self.store_name}" <{self.email_from}>',
            recipient=user.email,
            subject='Password Reset',
            html=body,
        )

    def request_password_reset(self, email: str) -> None:
        email = normalize_email(email)
        logger.info('Password reset request for email: %s', email)

        user = self._find_by_email(email) if email else None
        if user is None:
            raise NotFoundError(USER_NOT_FOUND_MESSAGE)

        token = self.tokens.issue_reset_token(user.id)
        link = self.build_reset_link(user.id, token)
        self.mailer.send(self.build_reset_message(user, link))

    def reset_password(self, user_id: int, token: str, password: str) -> None:
        logger.info('Reset password attempt for user ID: %s', user_id)
        user = self._get_or_404(user_id)

        if not password:
            raise ValidationError('Password is required')

        try:
            claims = self.tokens.verify_token(token, purpose=RESET_PURPOSE)
        except InvalidTokenError as exc:
            raise UnauthorizedError(INVALID_RESET_TOKEN_MESSAGE) from exc

        if claims.subject != str(user.id):
            raise UnauthorizedError(INVALID_RESET_TOKEN_MESSAGE)

        user.password_hash = hash_password(password)
        self._commit(user)


def get_account_service(
    db: Session = Depends(get_db),
    tokens: TokenIssuer = Depends(get_token_issuer),
    mailer: MailDispatcher = Depends(get_mailer),
) -> AccountService:
    return AccountService(db=db, tokens=tokens, mailer=mailer)
