"""Credential encryption for stored account passwords.

Fernet authenticated encryption with a key derived from a secret via
PBKDF2-HMAC-SHA256. ``decrypt`` fails loudly on anything it did not produce.
"""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

_ENCRYPTED_PREFIX = "enc:"
_PBKDF2_SALT = b"teamseat-credentials-v1"
_PBKDF2_ITERATIONS = 480_000


class FernetCipher:
    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("A secret key is required (set TEAMSEAT_SECRET_KEY)")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_PBKDF2_SALT,
            iterations=_PBKDF2_ITERATIONS,
        )
        derived = kdf.derive(secret_key.encode("utf-8"))
        self._fernet = Fernet(base64.urlsafe_b64encode(derived))

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return f"{_ENCRYPTED_PREFIX}{token.decode('utf-8')}"

    def decrypt(self, ciphertext: str) -> str:
        """Return the plaintext.

        Raises:
            ValueError: If the value is not prefixed or the token is invalid.
        """
        if not ciphertext or not ciphertext.startswith(_ENCRYPTED_PREFIX):
            raise ValueError("Ciphertext missing 'enc:' prefix, not an encrypted value")
        raw = ciphertext[len(_ENCRYPTED_PREFIX):]
        try:
            return self._fernet.decrypt(raw.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Decryption failed, invalid token or wrong key") from exc
