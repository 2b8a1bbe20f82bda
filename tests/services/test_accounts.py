from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from storefront.auth.jwt_handler import SESSION_PURPOSE
from storefront.auth.passwords import verify_password
from storefront.core.errors import (
    ConflictError,
    DatabaseUnavailableError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from storefront.models.user import User
from storefront.services.accounts import AccountService


def _register_ann(service: AccountService):
    return service.register('Ann', 'ann@x.com', 'secret1')


def test_register_persists_hashed_password_and_non_admin_user(account_service, user_db) -> None:
    result = _register_ann(account_service)

    stored = user_db.get(User, result.user.id)
    assert stored.name == 'Ann'
    assert stored.email == 'ann@x.com'
    assert stored.is_admin is False
    assert stored.password_hash != 'secret1'
    assert verify_password('secret1', stored.password_hash)
    assert stored.created_at is not None


def test_register_returns_session_token_for_new_user(account_service, tokens) -> None:
    result = _register_ann(account_service)

    claims = tokens.verify_token(result.token, purpose=SESSION_PURPOSE)
    assert claims.subject == str(result.user.id)


def test_register_normalizes_email(account_service) -> None:
    result = account_service.register('Ann', '  Ann@X.com ', 'secret1')

    assert result.user.email == 'ann@x.com'


def test_register_rejects_duplicate_normalized_email(account_service) -> None:
    _register_ann(account_service)

    with pytest.raises(ConflictError) as exception_info:
        account_service.register('Other Ann', 'ANN@x.com', 'secret2')

    assert exception_info.value.message == 'User already exists. Please choose a different email.'


def test_register_translates_unique_constraint_violation(account_service, monkeypatch) -> None:
    _register_ann(account_service)
    # Simulate a concurrent insert slipping past the existence check.
    monkeypatch.setattr(account_service, '_find_by_email', lambda email: None)

    with pytest.raises(ConflictError):
        account_service.register('Ann Again', 'ann@x.com', 'secret1')

    assert account_service.db.query(User).count() == 1


@pytest.mark.parametrize(
    ('name', 'email', 'password'),
    [('', 'ann@x.com', 'secret1'), ('Ann', '', 'secret1'), ('Ann', 'ann@x.com', '')],
)
def test_register_requires_all_fields(account_service, name: str, email: str, password: str) -> None:
    with pytest.raises(ValidationError):
        account_service.register(name, email, password)


def test_login_returns_token_whose_subject_is_the_user(account_service, tokens) -> None:
    user = _register_ann(account_service).user

    result = account_service.login('ann@x.com', 'secret1')

    assert result.user.id == user.id
    assert tokens.verify_token(result.token).subject == str(user.id)


def test_login_rejects_unknown_email(account_service) -> None:
    with pytest.raises(NotFoundError):
        account_service.login('nobody@x.com', 'secret1')


def test_login_rejects_wrong_password(account_service) -> None:
    _register_ann(account_service)

    with pytest.raises(UnauthorizedError):
        account_service.login('ann@x.com', 'wrong-password')


def test_login_requires_email_and_password(account_service) -> None:
    with pytest.raises(ValidationError):
        account_service.login('', 'secret1')


def test_get_profile_fails_for_deleted_user(account_service) -> None:
    user = _register_ann(account_service).user
    account_service.delete(user.id)

    with pytest.raises(NotFoundError):
        account_service.get_profile(user.id)


def test_update_profile_with_only_password_keeps_name_and_email(account_service) -> None:
    user = _register_ann(account_service).user
    old_hash = user.password_hash

    updated = account_service.update_profile(user.id, password='new-secret')

    assert updated.name == 'Ann'
    assert updated.email == 'ann@x.com'
    assert updated.password_hash != old_hash
    assert verify_password('new-secret', updated.password_hash)


def test_update_profile_treats_blank_fields_as_absent(account_service) -> None:
    user = _register_ann(account_service).user

    updated = account_service.update_profile(user.id, name='  ', email='')

    assert updated.name == 'Ann'
    assert updated.email == 'ann@x.com'


def test_update_profile_replaces_name_and_email(account_service) -> None:
    user = _register_ann(account_service).user

    updated = account_service.update_profile(user.id, name='Annie', email='Annie@X.com')

    assert updated.name == 'Annie'
    assert updated.email == 'annie@x.com'


def test_update_profile_rejects_email_owned_by_another_user(account_service) -> None:
    user = _register_ann(account_service).user
    account_service.register('Bob', 'bob@x.com', 'secret1')

    with pytest.raises(ConflictError):
        account_service.update_profile(user.id, email='bob@x.com')


def test_update_profile_fails_for_missing_user(account_service) -> None:
    with pytest.raises(NotFoundError):
        account_service.update_profile(404, name='Ghost')


def test_list_admins_and_non_admins_fail_when_empty(account_service) -> None:
    with pytest.raises(NotFoundError) as users_error:
        account_service.list_non_admins()
    with pytest.raises(NotFoundError) as admins_error:
        account_service.list_admins()

    assert users_error.value.message == 'No users found!'
    assert admins_error.value.message == 'No admins found!'


def test_list_admins_and_non_admins_partition_users(account_service) -> None:
    ann = _register_ann(account_service).user
    bob = account_service.register('Bob', 'bob@x.com', 'secret1').user
    carol = account_service.register('Carol', 'carol@x.com', 'secret1').user
    account_service.admin_update(carol.id, is_admin=True)

    assert {user.id for user in account_service.list_non_admins()} == {ann.id, bob.id}
    assert {user.id for user in account_service.list_admins()} == {carol.id}


def test_get_by_id_and_delete_fail_for_missing_user(account_service) -> None:
    with pytest.raises(NotFoundError):
        account_service.get_by_id(1)
    with pytest.raises(NotFoundError):
        account_service.delete(1)


def test_delete_removes_user(account_service, user_db) -> None:
    user = _register_ann(account_service).user

    account_service.delete(user.id)

    assert user_db.query(User).count() == 0


def test_admin_update_applies_partial_changes_and_admin_flag(account_service) -> None:
    user = _register_ann(account_service).user

    updated = account_service.admin_update(user.id, email='ann.admin@x.com', is_admin=True)

    assert updated.name == 'Ann'
    assert updated.email == 'ann.admin@x.com'
    assert updated.is_admin is True

    demoted = account_service.admin_update(user.id, is_admin=False)
    assert demoted.is_admin is False


def test_admin_update_leaves_admin_flag_when_absent(account_service) -> None:
    user = _register_ann(account_service).user
    account_service.admin_update(user.id, is_admin=True)

    updated = account_service.admin_update(user.id, name='Ann B')

    assert updated.name == 'Ann B'
    assert updated.is_admin is True


def test_request_password_reset_mails_link_with_reset_token(account_service, mailer, tokens) -> None:
    user = _register_ann(account_service).user

    account_service.request_password_reset('ANN@x.com')

    assert len(mailer.outbox) == 1
    message = mailer.outbox[0]
    assert message.recipient == 'ann@x.com'
    assert message.subject == 'Password Reset'
    assert message.sender == '"Test Shop" <shop@example.com>'
    prefix = f'http://shop.example.com/reset-password/{user.id}/'
    assert prefix in message.html
    token = message.html.split(prefix, 1)[1].split('"', 1)[0]
    assert tokens.verify_token(token).subject == str(user.id)


def test_request_password_reset_escapes_user_name(account_service, mailer) -> None:
    account_service.register('<b>Ann</b>', 'ann@x.com', 'secret1')

    account_service.request_password_reset('ann@x.com')

    assert '&lt;b&gt;Ann&lt;/b&gt;' in mailer.outbox[0].html


def test_request_password_reset_fails_for_unknown_email(account_service, mailer) -> None:
    with pytest.raises(NotFoundError):
        account_service.request_password_reset('nobody@x.com')

    assert mailer.outbox == []


def test_reset_password_changes_stored_hash(account_service, tokens) -> None:
    user = _register_ann(account_service).user

    account_service.reset_password(user.id, tokens.issue_reset_token(user.id), 'brand-new')

    assert account_service.login('ann@x.com', 'brand-new').user.id == user.id
    with pytest.raises(UnauthorizedError):
        account_service.login('ann@x.com', 'secret1')


def test_reset_password_rejects_expired_token(account_service, issuer_at) -> None:
    user = _register_ann(account_service).user
    stale = issuer_at(datetime.now(timezone.utc) - timedelta(minutes=16)).issue_reset_token(user.id)

    with pytest.raises(UnauthorizedError) as exception_info:
        account_service.reset_password(user.id, stale, 'brand-new')

    assert exception_info.value.message == 'Invalid or expired token'


def test_reset_password_rejects_token_for_another_user(account_service, tokens) -> None:
    ann = _register_ann(account_service).user
    bob = account_service.register('Bob', 'bob@x.com', 'secret1').user

    with pytest.raises(UnauthorizedError):
        account_service.reset_password(ann.id, tokens.issue_reset_token(bob.id), 'brand-new')


def test_reset_password_rejects_session_token(account_service, tokens) -> None:
    user = _register_ann(account_service).user

    with pytest.raises(UnauthorizedError):
        account_service.reset_password(user.id, tokens.issue_session_token(user.id), 'brand-new')


def test_reset_password_fails_for_unknown_user(account_service, tokens) -> None:
    with pytest.raises(NotFoundError):
        account_service.reset_password(77, tokens.issue_reset_token(77), 'brand-new')


def test_admin_update_rejects_email_owned_by_another_user(account_service) -> None:
    ann = _register_ann(account_service).user
    account_service.register('Bob', 'bob@x.com', 'secret1')

    with pytest.raises(ConflictError):
        account_service.admin_update(ann.id, email='BOB@x.com')

    assert account_service.get_by_id(ann.id).email == 'ann@x.com'


def _failing_commit(error: Exception):
    def commit():
        raise error

    return commit


def test_commit_connection_failure_rolls_back_and_reports_unavailable(account_service, monkeypatch) -> None:
    user = _register_ann(account_service).user
    rollbacks = []
    monkeypatch.setattr(account_service.db, 'commit', _failing_commit(OperationalError('UPDATE users', {}, Exception('gone'))))
    monkeypatch.setattr(account_service.db, 'rollback', lambda: rollbacks.append(True))

    with pytest.raises(DatabaseUnavailableError) as exception_info:
        account_service.update_profile(user.id, name='Annie')

    assert exception_info.value.status_code == 503
    assert rollbacks == [True]


def test_commit_reraises_other_database_errors_after_rollback(account_service, monkeypatch) -> None:
    user = _register_ann(account_service).user
    rollbacks = []
    monkeypatch.setattr(account_service.db, 'commit', _failing_commit(ProgrammingError('UPDATE users', {}, Exception('bad sql'))))
    monkeypatch.setattr(account_service.db, 'rollback', lambda: rollbacks.append(True))

    with pytest.raises(ProgrammingError):
        account_service.update_profile(user.id, name='Annie')

    assert rollbacks == [True]
