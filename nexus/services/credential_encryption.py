"""AES-256-GCM encryption for organization AI provider keys.

Stored format (compatible with keys written by the platform's web tier):
    encrypted_key: hex(ciphertext || 16-byte auth tag)
    iv:            hex(12-byte random IV)

Master key source precedence:
    1. NEXUS_ENCRYPTION_KEY env var (64 hex chars, or base64 of 32 bytes)
    2. NEXUS_ENCRYPTION_KEY_FILE env var (path to a raw 32-byte file)

The master key is never derived from user input. There is no generated
fallback: a platform without a configured key cannot decrypt stored keys,
so a missing key is a configuration error.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nexus.errors import CredentialDecryptionError

logger = logging.getLogger(__name__)

_REQUIRED_KEY_LENGTH = 32
_IV_LENGTH = 12
_TAG_LENGTH = 16


def _check_key(key: bytes) -> None:
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Encryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes "
            f"(got {len(key)}). AES-256-GCM requires a 256-bit key."
        )


def _decode_env_key(raw: str) -> bytes:
    """Decode NEXUS_ENCRYPTION_KEY as hex first, then base64."""
    if len(raw) == _REQUIRED_KEY_LENGTH * 2:
        try:
            return bytes.fromhex(raw)
        except ValueError:
            pass
    try:
        return base64.b64decode(raw, validate=True)
    except binascii.Error as e:
        raise ValueError(
            f"NEXUS_ENCRYPTION_KEY is neither 64 hex chars nor valid base64: {e}"
        ) from e


def load_master_key() -> bytes:
    """Load the 32-byte platform master key from the environment.

    Returns:
        32-byte encryption key.

    Raises:
        ValueError: If no key is configured, or the configured key is
            malformed or has the wrong length.
    """
    env_key = os.environ.get("NEXUS_ENCRYPTION_KEY", "").strip()
    if env_key:
        key = _decode_env_key(env_key)
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"NEXUS_ENCRYPTION_KEY has invalid length {len(key)} "
                f"(expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    env_key_file = os.environ.get("NEXUS_ENCRYPTION_KEY_FILE", "").strip()
    if env_key_file:
        if os.path.islink(env_key_file):
            raise ValueError(
                f"NEXUS_ENCRYPTION_KEY_FILE is a symlink: {env_key_file}. "
                "Symlinks are rejected to prevent link-following attacks."
            )
        if not os.path.isfile(env_key_file):
            raise ValueError(
                f"NEXUS_ENCRYPTION_KEY_FILE is not a regular file: {env_key_file}"
            )
        with open(env_key_file, "rb") as f:
            key = f.read()
        logger.debug("Loaded encryption key from %s", env_key_file)
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"Key file {env_key_file} has invalid length {len(key)} "
                f"(expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    raise ValueError(
        "No encryption key configured. Set NEXUS_ENCRYPTION_KEY "
        "or NEXUS_ENCRYPTION_KEY_FILE."
    )


def encrypt(plaintext: str, key: bytes) -> tuple[str, str]:
    """Encrypt a secret with a fresh random IV.

    Args:
        plaintext: Secret to encrypt (e.g. a provider API key).
        key: 32-byte AES-256 key.

    Returns:
        (ciphertext_hex, iv_hex) where ciphertext_hex carries the auth tag
        appended to the ciphertext.

    Raises:
        ValueError: If key is not exactly 32 bytes.
    """
    _check_key(key)
    iv = os.urandom(_IV_LENGTH)
    # AESGCM.encrypt already returns ciphertext || tag
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return sealed.hex(), iv.hex()


def decrypt(ciphertext_hex: str, iv_hex: str, key: bytes) -> str:
    """Decrypt a secret produced by encrypt().

    Fails closed: any malformed input, wrong key or tampering raises, and
    no partial plaintext is ever returned.

    Args:
        ciphertext_hex: hex(ciphertext || tag).
        iv_hex: hex IV.
        key: 32-byte AES-256 key.

    Returns:
        Decrypted plaintext.

    Raises:
        CredentialDecryptionError: If decryption fails for any reason,
            including wrong key length.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise CredentialDecryptionError(
            f"key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )

    try:
        iv = bytes.fromhex(iv_hex)
        sealed = bytes.fromhex(ciphertext_hex)
    except (ValueError, TypeError) as e:
        raise CredentialDecryptionError(f"malformed hex input: {e}") from e

    if len(iv) != _IV_LENGTH:
        raise CredentialDecryptionError(
            f"invalid IV length {len(iv)} (expected {_IV_LENGTH})"
        )
    if len(sealed) < _TAG_LENGTH:
        raise CredentialDecryptionError("ciphertext shorter than auth tag")

    try:
        plaintext = AESGCM(key).decrypt(iv, sealed, None)
    except InvalidTag as e:
        raise CredentialDecryptionError("authentication failed") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CredentialDecryptionError("plaintext is not valid UTF-8") from e
