import pytest

from storefront.auth.passwords import hash_password, verify_password


def test_hash_password_does_not_store_plain_text() -> None:
    hashed = hash_password('secret1')

    assert hashed != 'secret1'
    assert hashed.startswith('$argon2')


def test_verify_password_accepts_matching_password() -> None:
    hashed = hash_password('secret1')

    assert verify_password('secret1', hashed) is True


def test_verify_password_rejects_wrong_password() -> None:
    hashed = hash_password('secret1')

    assert verify_password('secret2', hashed) is False


def test_verify_password_rejects_malformed_hash() -> None:
    assert verify_password('secret1', 'not-a-real-hash') is False


def test_verify_password_rejects_empty_values() -> None:
    assert verify_password('', hash_password('secret1')) is False
    assert verify_password('secret1', '') is False


def test_hash_password_rejects_empty_password() -> None:
    with pytest.raises(ValueError):
        hash_password('')


def test_hash_password_salts_each_hash() -> None:
    assert hash_password('secret1') != hash_password('secret1')
