import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ledgersync.errors import DecryptionError
from ledgersync.settings import settings

@lru_cache(maxsize=8)
def build_fernet(secret: str, salt: str) -> Fernet:
    # scrypt(secret, salt) -> 32 bytes -> urlsafe base64, the key format Fernet expects.
    # Each Fernet token embeds its own random 128-bit IV next to the ciphertext.
    if not secret or not salt:
        raise DecryptionError("Token encryption secret and salt must both be set")
    kdf = Scrypt(salt=salt.encode("utf-8"), length=32, n=2**14, r=8, p=1)
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
    return Fernet(key)

def _default_fernet() -> Fernet:
    return build_fernet(settings.TOKEN_ENCRYPTION_SECRET, settings.TOKEN_ENCRYPTION_SALT)

def encrypt_str(s: str, fernet: Fernet = None) -> str:
    """
    Encrypts string s. Two calls with the same input give different ciphertexts.
    """
    if not s:
        return ""
    f = fernet or _default_fernet()
    return f.encrypt(s.encode("utf-8")).decode("utf-8")

def decrypt_str(token: str, fernet: Fernet = None) -> str:
    """
    Decrypts token. Raises DecryptionError if the token is empty, truncated,
    lacks its IV, or was produced with another secret/salt.
    """
    if not token:
        raise DecryptionError("No ciphertext stored")
    f = fernet or _default_fernet()
    try:
        return f.decrypt(token.encode("utf-8")).decode("utf-8")
    except (InvalidToken, ValueError, TypeError) as e:
        raise DecryptionError(f"Decryption failed: {type(e).__name__}") from e
