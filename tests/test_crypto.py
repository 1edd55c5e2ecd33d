import pytest

from ledgersync.crypto import build_fernet, decrypt_str, encrypt_str
from ledgersync.errors import DecryptionError


def test_encrypt_roundtrip_is_non_deterministic():
    first = encrypt_str("at_secret")
    second = encrypt_str("at_secret")

    # Fresh IV per call
    assert first != second
    assert decrypt_str(first) == "at_secret"
    assert decrypt_str(second) == "at_secret"


def test_decrypt_with_other_salt_fails_closed():
    token = encrypt_str("at_secret", build_fernet("secret", "salt-a"))

    with pytest.raises(DecryptionError):
        decrypt_str(token, build_fernet("secret", "salt-b"))


def test_decrypt_truncated_token_fails_closed():
    token = encrypt_str("at_secret")

    # Fernet tokens start with version + timestamp + IV; cutting them short drops the IV.
    with pytest.raises(DecryptionError):
        decrypt_str(token[:20])


def test_decrypt_garbage_and_empty_fail_closed():
    with pytest.raises(DecryptionError):
        decrypt_str("not-a-token|deadbeef")
    with pytest.raises(DecryptionError):
        decrypt_str("")


def test_missing_secret_or_salt_is_rejected():
    with pytest.raises(DecryptionError):
        build_fernet("", "salt")
    with pytest.raises(DecryptionError):
        build_fernet("secret", "")
