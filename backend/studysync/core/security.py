"""
Encryption of portal credentials at rest.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import TYPE_CHECKING, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from studysync.core.config import settings
from studysync.models.sync_metadata import PortalCredentialRecord

if TYPE_CHECKING:
    from studysync.services.sync.types import Credentials


logger = logging.getLogger(__name__)


class CredentialCipher:
    """Symmetric encryption of credential blobs."""

    def __init__(self, encryption_key: Optional[bytes] = None):
        if encryption_key:
            self.fernet = Fernet(encryption_key)
        else:
            # Blobs written with a generated key do not survive a restart
            logger.warning("No CREDENTIALS_KEY configured, generating a process-local key")
            self.fernet = Fernet(Fernet.generate_key())

    @classmethod
    def from_password(cls, password: str, salt: bytes) -> 'CredentialCipher':
        """Create a cipher from a password; the same salt must be used on every start."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(password.encode()))
        return cls(key)

    @classmethod
    def from_settings(cls) -> 'CredentialCipher':
        """
        Cipher from CREDENTIALS_KEY, else from CREDENTIALS_PASSPHRASE and
        CREDENTIALS_SALT, else a process-local key.

        Raises:
            ValueError: if a passphrase is configured without a valid salt
        """
        if settings.CREDENTIALS_KEY:
            return cls(settings.CREDENTIALS_KEY.encode())
        if settings.CREDENTIALS_PASSPHRASE:
            if not settings.CREDENTIALS_SALT:
                raise ValueError("CREDENTIALS_SALT is required with CREDENTIALS_PASSPHRASE")
            try:
                salt = base64.urlsafe_b64decode(settings.CREDENTIALS_SALT.encode())
            except ValueError as e:
                raise ValueError("CREDENTIALS_SALT must be base64") from e
            return cls.from_password(settings.CREDENTIALS_PASSPHRASE, salt)
        return cls(None)

    def encrypt(self, data: bytes) -> str:
        """Encrypt raw bytes into an opaque blob."""
        return self.fernet.encrypt(data).decode()

    def decrypt(self, blob: str) -> bytes:
        """Decrypt a blob produced by ``encrypt``.

        Raises:
            ValueError: if the blob was not produced with this key
        """
        try:
            return self.fernet.decrypt(blob.encode())
        except InvalidToken as e:
            raise ValueError("Credential blob cannot be decrypted") from e


class CredentialVault:
    """
    Encrypted-at-rest storage of a user's portal credentials.

    Only the encrypted blob produced by ``CredentialCipher`` is ever written.
    """

    def __init__(self, db: AsyncSession, cipher: CredentialCipher, user_id: str):
        self.db = db
        self.cipher = cipher
        self.user_id = user_id

    async def _record(self) -> Optional[PortalCredentialRecord]:
        result = await self.db.execute(
            select(PortalCredentialRecord).where(PortalCredentialRecord.user_id == self.user_id)
        )
        return result.scalar_one_or_none()

    async def store(self, credentials: Credentials) -> None:
        blob = self.cipher.encrypt(json.dumps(credentials.to_dict()).encode())
        record = await self._record()
        if record:
            record.blob = blob
        else:
            self.db.add(PortalCredentialRecord(user_id=self.user_id, blob=blob))
        await self.db.commit()

    async def load(self) -> Optional[Credentials]:
        from studysync.services.sync.types import Credentials

        record = await self._record()
        if not record:
            return None
        try:
            return Credentials.from_dict(json.loads(self.cipher.decrypt(record.blob)))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Stored credentials for {self.user_id} are unreadable: {e}")
            return None

    async def clear(self) -> None:
        await self.db.execute(
            delete(PortalCredentialRecord).where(PortalCredentialRecord.user_id == self.user_id)
        )
        await self.db.commit()
