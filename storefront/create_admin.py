"""Create an administrator account, or promote an existing user to admin.

Usage:
    python -m storefront.create_admin --email admin@example.com --name "Store Admin"
"""
import argparse
import sys
from getpass import getpass
from typing import Sequence

from sqlalchemy.orm import Session

from storefront.auth.passwords import hash_password
from storefront.database import Base, SessionLocal, engine
from storefront.models.user import User
from storefront.services.accounts import normalize_email

MIN_PASSWORD_LENGTH = 6


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Create or promote a storefront administrator')
    parser.add_argument('--email', required=True, help='Email address of the admin account')
    parser.add_argument('--name', default=None, help='Display name (required when creating a new account)')
    return parser.parse_args(argv)


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f'Password (min {MIN_PASSWORD_LENGTH} characters): ').strip()
        if len(password) < MIN_PASSWORD_LENGTH:
            print('Password is too short. Please try again.')
            continue
        confirmation = getpass('Confirm password: ').strip()
        if password != confirmation:
            print('Passwords do not match. Please try again.')
            continue
        return password
    return None


def ensure_admin(db: Session, email: str, name: str | None, password: str | None) -> tuple[User, bool]:
    """Return ``(user, created)`` after making sure ``email`` belongs to an admin."""
    email = normalize_email(email)
    user = db.query(User).filter(User.email == email).first()
    if user is not None:
        user.is_admin = True
        db.commit()
        db.refresh(user)
        return user, False

    if not name or not name.strip():
        raise ValueError('A name is required to create a new admin account.')
    if not password:
        raise ValueError('A password is required to create a new admin account.')

    user = User(name=name.strip(), email=email, password_hash=hash_password(password), is_admin=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, True


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    Base.metadata.create_all(bind=engine, tables=[User.__table__])

    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == normalize_email(args.email)).first()
        password = None
        if existing is None:
            password = _prompt_for_password()
            if password is None:
                print('Aborted creating admin.', file=sys.stderr)
                return 1
        try:
            user, created = ensure_admin(db, args.email, args.name, password)
        except ValueError as exc:
            print(f'Failed to create admin: {exc}', file=sys.stderr)
            return 1
    finally:
        db.close()

    action = 'Created' if created else 'Promoted'
    print(f'{action} admin #{user.id}: {user.name} <{user.email}>')
    return 0


if __name__ == '__main__':
    sys.exit(main())
