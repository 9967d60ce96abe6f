"""Optional at-rest sealing for stored key material.

Uses Fernet (AES-128-CBC with HMAC) for symmetric encryption. Without a
master key, wallet secrets are stored as plain hex/base58 text; that
plaintext-at-rest custody model is the main residual risk of this service.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from vaultswap.errors import InvalidKeyEncoding

logger = logging.getLogger(__name__)

SEALED_PREFIX = "enc:"


def generate_master_key() -> str:
    """Generate a new master encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for Fernet
    """
    return Fernet.generate_key().decode()


class SecretBox:
    """Seals and unseals key material with a Fernet master key.

    Usage:
        box = SecretBox(master_key)
        stored = box.seal("0xabc...")
        plain = box.unseal(stored)

    A box created without a key passes values through unchanged, so
    deployments can turn sealing on later without migrating old rows.
    """

    def __init__(self, master_key: Optional[str] = None):
        self._fernet = Fernet(master_key.encode()) if master_key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def seal(self, material: str) -> str:
        if self._fernet is None:
            return material
        return SEALED_PREFIX + self._fernet.encrypt(material.encode()).decode()

    def unseal(self, stored: str) -> str:
        """Return the plain encoding of stored key material.

        Raises:
            InvalidKeyEncoding: sealed value without a key, or wrong key
        """
        if not stored.startswith(SEALED_PREFIX):
            return stored

        if self._fernet is None:
            raise InvalidKeyEncoding("Key material is sealed but no master key is configured")

        try:
            return self._fernet.decrypt(stored[len(SEALED_PREFIX):].encode()).decode()
        except InvalidToken:
            logger.error("Failed to unseal key material (wrong master key or corrupted data)")
            raise InvalidKeyEncoding()


def get_secret_box() -> SecretBox:
    """Get a SecretBox using MASTER_KEY from settings."""
    from vaultswap.config import get_settings

    return SecretBox(get_settings().master_key)
