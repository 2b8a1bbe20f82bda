import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret')

from storefront.auth.jwt_handler import TokenIssuer  # noqa: E402
from storefront.database import Base  # noqa: E402
from storefront.models.user import User  # noqa: E402
from storefront.services.accounts import AccountService  # noqa: E402
from storefront.services.mailer import LoggingMailer  # noqa: E402

TEST_SECRET = 'unit-test-signing-key'


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=[User.__table__])
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=[User.__table__])
        engine.dispose()


@pytest.fixture
def user_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def tokens() -> TokenIssuer:
    return TokenIssuer(secret_key=TEST_SECRET, session_expires_minutes=60)


@pytest.fixture
def mailer() -> LoggingMailer:
    return LoggingMailer()


@pytest.fixture
def account_service(user_db, tokens, mailer) -> AccountService:
    return AccountService(
        db=user_db,
        tokens=tokens,
        mailer=mailer,
        frontend_url='http://shop.example.com/',
        store_name='Test Shop',
        email_from='shop@example.com',
    )


@pytest.fixture
def issuer_at():
    """Build a token issuer whose clock is frozen at the given moment."""

    def build(moment: datetime) -> TokenIssuer:
        return TokenIssuer(secret_key=TEST_SECRET, session_expires_minutes=60, clock=lambda: moment)

    return build
