"""Bearer token verification and credential encryption."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from app.core.config import settings


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Create a JWT access token.

    Tokens are normally minted by the identity service; this helper exists for
    service-to-service calls and tests.

    Args:
        data: Claims to encode (``sub`` must be the owner UUID)
        expires_delta: Token lifetime, 15 minutes when omitted

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded token data or None if invalid
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


class CredentialEncryption:
    """Handles encryption and decryption of cloud credentials."""

    def __init__(self, key: str | None = None) -> None:
        self.cipher = Fernet((key or settings.ENCRYPTION_KEY).encode())

    def encrypt(self, data: str) -> bytes:
        return self.cipher.encrypt(data.encode())

    def decrypt(self, encrypted_data: bytes) -> str:
        return self.cipher.decrypt(encrypted_data).decode()

    def encrypt_json(self, payload: dict[str, Any]) -> bytes:
        """Serialize and encrypt a credentials mapping."""
        return self.encrypt(json.dumps(payload))

    def decrypt_json(self, encrypted_data: bytes) -> dict[str, Any] | None:
        """
        Decrypt a credentials mapping.

        Returns:
            The decoded mapping, or None when the ciphertext was produced with
            another key or is not JSON
        """
        try:
            return json.loads(self.decrypt(encrypted_data))
        except (InvalidToken, ValueError):
            return None


# Create global encryption instance
credential_encryption = CredentialEncryption()
