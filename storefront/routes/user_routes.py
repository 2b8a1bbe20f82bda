from datetime import datetime

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field, field_validator

from storefront.auth.dependencies import CallerIdentity, get_current_identity, require_admin
from storefront.auth.jwt_handler import TokenIssuer, get_token_issuer
from storefront.core import config
from storefront.core.errors import ValidationError
from storefront.models.user import User
from storefront.services.accounts import AccountService, get_account_service

router = APIRouter(tags=['users'])

MIN_PASSWORD_LENGTH = 6
# users.id is a 64-bit integer column.
MAX_USER_ID = 2**63 - 1


def _validate_email(value: str | None, required: bool = True) -> str | None:
    normalized = (value or '').strip().lower()
    if not normalized:
        if required:
            raise ValueError('Email is required')
        return None
    try:
        validate_email(normalized, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError('Please enter a valid email address') from exc
    return normalized


def _validate_password(value: str | None, required: bool = True) -> str | None:
    normalized = (value or '').strip()
    if not normalized:
        if required:
            raise ValueError('Password is required')
        return None
    if len(normalized) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return normalized


def _optional_name(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email_address(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email_address(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Password is required')
        return normalized


class UpdateProfileRequest(BaseModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        return _optional_name(value)

    @field_validator('email')
    @classmethod
    def validate_email_address(cls, value: str | None) -> str | None:
        return _validate_email(value, required=False)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str | None) -> str | None:
        return _validate_password(value, required=False)


class AdminUpdateUserRequest(BaseModel):
    name: str | None = None
    email: str | None = None
    is_admin: bool | None = Field(default=None, alias='isAdmin')

    class Config:
        populate_by_name = True

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        return _optional_name(value)

    @field_validator('email')
    @classmethod
    def validate_email_address(cls, value: str | None) -> str | None:
        return _validate_email(value, required=False)

    @field_validator('is_admin', mode='before')
    @classmethod
    def validate_is_admin(cls, value):
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in {'true', 'false', '1', '0'}:
            return value.strip().lower() in {'true', '1'}
        raise ValueError('isAdmin value should be true/false')


class ResetPasswordRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def validate_email_address(cls, value: str) -> str:
        return _validate_email(value)


class ResetPasswordBody(BaseModel):
    password: str

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    is_admin: bool = Field(serialization_alias='isAdmin')
    created_at: datetime | None = Field(default=None, serialization_alias='createdAt')
    updated_at: datetime | None = Field(default=None, serialization_alias='updatedAt')

    class Config:
        from_attributes = True


def parse_user_id(raw_user_id: str) -> int:
    try:
        user_id = int(raw_user_id)
    except (TypeError, ValueError):
        user_id = 0
    if user_id < 1 or user_id > MAX_USER_ID:
        raise ValidationError('Invalid ID: Must be a positive integer')
    return user_id


def path_user_id(user_id: str) -> int:
    """Validate the `{user_id}` path segment before any other dependency runs."""
    return parse_user_id(user_id)


def serialize_user(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump(mode='json', by_alias=True)


def set_session_cookie(response: Response, token: str, tokens: TokenIssuer) -> None:
    response.set_cookie(
        key=config.JWT_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.JWT_COOKIE_SECURE,
        samesite='strict',
        max_age=tokens.session_expires_minutes * 60,
    )


@router.post('', status_code=status.HTTP_201_CREATED)
def register_user(
    data: RegisterRequest,
    response: Response,
    service: AccountService = Depends(get_account_service),
    tokens: TokenIssuer = Depends(get_token_issuer),
):
    result = service.register(data.name, data.email, data.password)
    set_session_cookie(response, result.token, tokens)
    return {
        'message': 'Registration successful. Welcome!',
        **result.user.to_profile(),
        'token': result.token,
    }


@router.post('/login')
def login_user(
    data: LoginRequest,
    response: Response,
    service: AccountService = Depends(get_account_service),
    tokens: TokenIssuer = Depends(get_token_issuer),
):
    result = service.login(data.email, data.password)
    set_session_cookie(response, result.token, tokens)
    return {
        'message': 'Login successful.',
        **result.user.to_profile(),
        'token': result.token,
    }


@router.post('/logout')
def logout_user(
    response: Response,
    identity: CallerIdentity = Depends(get_current_identity),
):
    del identity
    response.delete_cookie(
        key=config.JWT_COOKIE_NAME,
        httponly=True,
        secure=config.JWT_COOKIE_SECURE,
        samesite='strict',
    )
    return {'message': 'Logout successful'}


@router.get('/profile')
def get_user_profile(
    identity: CallerIdentity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
):
    user = service.get_profile(identity.user_id)
    return {'message': 'User profile retrieved successfully', **user.to_profile()}


@router.put('/profile')
def update_user_profile(
    data: UpdateProfileRequest,
    identity: CallerIdentity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
):
    user = service.update_profile(
        identity.user_id,
        name=data.name,
        email=data.email,
        password=data.password,
    )
    return {'message': 'User profile updated successfully.', **user.to_profile()}


@router.get('', response_model=list[UserResponse])
def list_users(
    admin: User = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    del admin
    return service.list_non_admins()


@router.get('/admins', response_model=list[UserResponse])
def list_admins(
    admin: User = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    del admin
    return service.list_admins()


@router.post('/reset-password/request')
def request_password_reset(
    data: ResetPasswordRequest,
    service: AccountService = Depends(get_account_service),
):
    service.request_password_reset(data.email)
    return {'message': 'Password reset email sent, please check your email.'}


@router.post('/reset-password/reset/{user_id}/{token}')
def reset_password(
    token: str,
    data: ResetPasswordBody,
    user_id: int = Depends(path_user_id),
    service: AccountService = Depends(get_account_service),
):
    token = token.strip()
    if not token:
        raise ValidationError('Token is required')
    service.reset_password(user_id, token, data.password)
    return {'message': 'Password successfully reset'}


@router.get('/{user_id}', response_model=UserResponse)
def get_user_by_id(
    user_id: int = Depends(path_user_id),
    admin: User = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    del admin
    return service.get_by_id(user_id)


@router.put('/{user_id}')
def update_user(
    data: AdminUpdateUserRequest,
    user_id: int = Depends(path_user_id),
    admin: User = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    del admin
    user = service.admin_update(
        user_id,
        name=data.name,
        email=data.email,
        is_admin=data.is_admin,
    )
    return {'message': 'User updated', 'updatedUser': serialize_user(user)}


@router.delete('/{user_id}')
def delete_user(
    user_id: int = Depends(path_user_id),
    admin: User = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    del admin
    service.delete(user_id)
    return {'message': 'User deleted'}
