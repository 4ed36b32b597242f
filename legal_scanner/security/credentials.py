"""
Credential Encryption
=====================
Encrypts repository access tokens before they are written to the scan
store, and decrypts them when the coordinator needs to clone.

Author: Legal Scanner Team
"""

import base64
import logging
import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Credential encryption or decryption failure."""
    pass


class CredentialCipher:
    """Fernet cipher keyed from a configured secret via PBKDF2."""

    ITERATIONS = 100000

    def __init__(self, secret: Optional[str] = None, salt: str = "legal-scanner-credentials"):
        """
        Initialize cipher.

        Args:
            secret: Key material; a random per-process secret is used if omitted
            salt: KDF salt
        """
        if not secret:
            logger.warning("No credential secret configured, generating an ephemeral key")
            secret = secrets.token_hex(32)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=self.ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
        self.cipher = Fernet(key)

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        """
        Encrypt a credential for storage.

        Args:
            value: Plain text credential

        Returns:
            Encrypted token, or None when there is no credential
        """
        if not value:
            return None
        return self.cipher.encrypt(value.encode()).decode('utf-8')

    def decrypt(self, encrypted: Optional[str]) -> Optional[str]:
        if not encrypted:
            return None
        try:
            return self.cipher.decrypt(encrypted.encode()).decode('utf-8')
        except InvalidToken as e:
            raise CredentialError("Stored credential cannot be decrypted with the configured secret") from e
