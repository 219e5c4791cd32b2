"""Encryption Service"""

import base64
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import structlog

from threatguard.utils.config import settings
from threatguard.utils.errors import ThreatGuardError

logger = structlog.get_logger()


class DecryptionError(ThreatGuardError):
    """Ciphertext could not be decrypted for the given tenant and purpose"""


class EncryptionService:
    """
    Tenant-scoped field encryption

    Features:
    - AES-128-CBC + HMAC (Fernet) tokens
    - Per (tenant, purpose) keys derived from the master key with HKDF
    - Key rotation; ciphertexts carry their key id so old data still decrypts
    """

    def __init__(self, secret: Optional[str] = None, salt: Optional[str] = None):
        self.keys: Dict[str, bytes] = {}
        self.active_key_id = "default-key"
        self._fernets: Dict[Tuple[str, str, str], Fernet] = {}
        self._initialize_default_key(secret or settings.ENCRYPTION_SECRET, salt or settings.ENCRYPTION_SALT)

    def _initialize_default_key(self, secret: str, salt: str):
        """Derive the default master key from the configured secret"""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=100000,
        )
        self.keys[self.active_key_id] = kdf.derive(secret.encode())

    def _fernet_for(self, key_id: str, tenant_id: str, purpose: str) -> Fernet:
        cache_key = (key_id, tenant_id, purpose)
        fernet = self._fernets.get(cache_key)
        if fernet is None:
            hkdf = HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=None,
                info=f"{tenant_id}:{purpose}".encode(),
            )
            derived = hkdf.derive(self.keys[key_id])
            fernet = Fernet(base64.urlsafe_b64encode(derived))
            self._fernets[cache_key] = fernet
        return fernet

    async def encrypt_field(self, plaintext: str, tenant_id: str, purpose: str) -> str:
        """
        Encrypt a value for one tenant and purpose

        Returns:
            ``<key_id>:<token>`` ciphertext
        """
        fernet = self._fernet_for(self.active_key_id, tenant_id, purpose)
        token = fernet.encrypt(plaintext.encode()).decode()
        return f"{self.active_key_id}:{token}"

    async def decrypt_field(
        self,
        ciphertext: str,
        tenant_id: str,
        purpose: str,
        strict: bool = False
    ) -> str:
        """
        Decrypt a value produced by ``encrypt_field``

        With ``strict=False`` a value that cannot be decrypted (wrong tenant,
        wrong purpose, corrupted or unknown key) is returned unchanged.
        With ``strict=True`` a ``DecryptionError`` is raised instead.
        """
        key_id, _, token = str(ciphertext).partition(":")
        try:
            if not token or key_id not in self.keys:
                raise DecryptionError(f"Unknown key or malformed ciphertext: {key_id}")
            fernet = self._fernet_for(key_id, tenant_id, purpose)
            return fernet.decrypt(token.encode()).decode()
        except (InvalidToken, DecryptionError, UnicodeDecodeError) as e:
            logger.warning(
                "decryption_failed",
                tenant_id=tenant_id,
                purpose=purpose,
                key_id=key_id,
                error=str(e) or type(e).__name__
            )
            if strict:
                raise DecryptionError(f"Failed to decrypt {purpose} for tenant {tenant_id}") from e
            return ciphertext

    async def rotate_key(self, old_key_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Rotate the active master key

        Previously issued ciphertexts keep decrypting with the key that issued them.
        """
        old_key_id = old_key_id or self.active_key_id
        now = datetime.now(timezone.utc)
        new_key_id = f"key-{now.strftime('%Y%m%d%H%M%S%f')}"
        self.keys[new_key_id] = base64.urlsafe_b64decode(Fernet.generate_key())

        self.active_key_id = new_key_id

        logger.info(
            "key_rotated",
            old_key_id=old_key_id,
            new_key_id=new_key_id
        )

        return {
            "old_key_id": old_key_id,
            "new_key_id": new_key_id,
            "rotated_at": now.isoformat()
        }

    async def list_keys(self) -> List[Dict[str, Any]]:
        """List available encryption keys"""
        return [
            {
                "key_id": key_id,
                "active": key_id == self.active_key_id,
                "algorithm": "Fernet/HKDF-SHA256"
            }
            for key_id in self.keys.keys()
        ]
