"""
Credential vault.
Encrypts connection credentials at rest with AES-256-GCM.

Each payload gets a fresh random 96-bit nonce and is bound to its
connection id through the associated data, so a ciphertext copied onto
another connection fails tag verification.
"""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "STORESYNC_DATA_KEY"
KEY_LENGTH = 32  # 256 bits
NONCE_LENGTH = 12  # 96 bits, the GCM recommendation


@dataclass
class EncryptedPayload:
    """Nonce and ciphertext (tag appended), both base64 encoded."""
    nonce: str
    ciphertext: str


def generate_key() -> str:
    """Generate a new random data key as a hex string."""
    return AESGCM.generate_key(bit_length=KEY_LENGTH * 8).hex()


def _decode_key(raw: str) -> bytes:
    """Accept a 32-byte key as hex or urlsafe base64."""
    raw = raw.strip()
    try:
        key = bytes.fromhex(raw)
    except ValueError:
        try:
            key = base64.urlsafe_b64decode(raw + '=' * (-len(raw) % 4))
        except (binascii.Error, ValueError):
            raise ConfigurationError("Data key is neither hex nor base64")
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(f"Data key must be {KEY_LENGTH} bytes, got {len(key)}")
    return key


class CredentialVault:
    """Encrypt and decrypt credential dictionaries."""

    def __init__(self, key: str):
        self._aead = AESGCM(_decode_key(key))

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> EncryptedPayload:
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._aead.encrypt(nonce, plaintext, associated_data)
        return EncryptedPayload(
            nonce=base64.b64encode(nonce).decode('ascii'),
            ciphertext=base64.b64encode(ciphertext).decode('ascii')
        )

    def decrypt(self, payload: EncryptedPayload, associated_data: bytes) -> bytes:
        if not payload or not payload.nonce or not payload.ciphertext:
            raise ConfigurationError("Encrypted payload is empty")
        try:
            nonce = base64.b64decode(payload.nonce)
            ciphertext = base64.b64decode(payload.ciphertext)
            return self._aead.decrypt(nonce, ciphertext, associated_data)
        except (InvalidTag, binascii.Error, ValueError):
            raise ConfigurationError("Credentials could not be decrypted (wrong key or tampered data)")

    def encrypt_credentials(self, connection_id: str, credentials: Dict[str, Any]) -> EncryptedPayload:
        """Serialize and encrypt a credential dict for one connection."""
        plaintext = json.dumps(credentials, sort_keys=True).encode('utf-8')
        return self.encrypt(plaintext, connection_id.encode('utf-8'))

    def decrypt_credentials(self, connection_id: str, payload: EncryptedPayload) -> Dict[str, Any]:
        """Decrypt a credential dict previously stored for this connection."""
        plaintext = self.decrypt(payload, connection_id.encode('utf-8'))
        try:
            data = json.loads(plaintext.decode('utf-8'))
        except ValueError:
            raise ConfigurationError("Decrypted credentials are not valid JSON")
        if not isinstance(data, dict):
            raise ConfigurationError("Decrypted credentials must be a mapping")
        return data


def load_vault(key: Optional[str] = None) -> CredentialVault:
    """
    Build the vault from an explicit key, the STORESYNC_DATA_KEY
    environment variable, or security.data_key in config.yaml.
    """
    if not key:
        key = os.environ.get(KEY_ENV_VAR)
    if not key:
        from .config import get_config
        key = get_config().data_key
    if not key:
        raise ConfigurationError(
            f"No data key configured. Set {KEY_ENV_VAR} or security.data_key "
            f"(generate one with `python cli.py keygen`)"
        )
    return CredentialVault(key)
