"""Organization-scoped AI provider key management.

Keys are encrypted with the platform master key before storage and only
decrypted inside the turn that uses them. Listings expose a masked tail of
the stored ciphertext, never the plaintext.
"""

import logging
from typing import Any

import httpx
from sqlalchemy.orm import Session

from nexus.db.models import AIProviderKey, utc_now_iso
from nexus.errors import (
    CredentialDecryptionError,
    UnsupportedProviderError,
    ValidationError,
)
from nexus.orchestrator.agent.config import SUPPORTED_PROVIDERS
from nexus.services.credential_encryption import decrypt, encrypt, load_master_key
from nexus.utils.redaction import mask_secret, sanitize_error_message

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"
GOOGLE_MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_PROBE_TIMEOUT = 10.0


class ProviderKeyService:
    """CRUD and lookup for encrypted AI provider keys.

    Args:
        db: SQLAlchemy session.
        master_key: 32-byte vault key. Loaded from the environment when omitted.
    """

    def __init__(self, db: Session, master_key: bytes | None = None) -> None:
        self._db = db
        self._master_key = master_key

    @property
    def master_key(self) -> bytes:
        if self._master_key is None:
            self._master_key = load_master_key()
        return self._master_key

    @staticmethod
    def _row_to_dict(row: AIProviderKey) -> dict[str, Any]:
        return {
            "id": row.id,
            "provider": row.provider,
            "label": row.label,
            "isActive": row.is_active,
            "createdAt": row.created_at,
            "updatedAt": row.updated_at,
            "maskedKey": mask_secret(row.encrypted_key),
        }

    def list_keys(self, org_id: str) -> list[dict[str, Any]]:
        """List an organization's keys with masked values."""
        rows = (
            self._db.query(AIProviderKey)
            .filter_by(org_id=org_id)
            .order_by(AIProviderKey.created_at)
            .all()
        )
        return [self._row_to_dict(r) for r in rows]

    def add_key(
        self, org_id: str, provider: str, api_key: str, label: str
    ) -> dict[str, Any]:
        """Encrypt and store a provider key.

        Raises:
            UnsupportedProviderError: If provider has no adapter.
            ValidationError: If api_key or label is empty.
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(provider)
        if not api_key.strip():
            raise ValidationError("api_key must not be empty")
        if not label.strip():
            raise ValidationError("label must not be empty")

        ciphertext, iv = encrypt(api_key.strip(), self.master_key)
        row = AIProviderKey(
            org_id=org_id,
            provider=provider,
            encrypted_key=ciphertext,
            iv=iv,
            label=label.strip(),
        )
        self._db.add(row)
        self._db.commit()
        logger.info(
            "Added %s provider key %s for org %s (%s)",
            provider, row.id, org_id, mask_secret(api_key),
        )
        return self._row_to_dict(row)

    def remove_key(self, org_id: str, key_id: str) -> bool:
        """Delete a key. Returns False when it does not exist in this org."""
        row = (
            self._db.query(AIProviderKey)
            .filter_by(id=key_id, org_id=org_id)
            .first()
        )
        if row is None:
            return False
        self._db.delete(row)
        self._db.commit()
        logger.info("Removed provider key %s for org %s", key_id, org_id)
        return True

    def set_active(self, org_id: str, key_id: str, is_active: bool) -> bool:
        """Enable or disable a key. Returns False when it does not exist."""
        row = (
            self._db.query(AIProviderKey)
            .filter_by(id=key_id, org_id=org_id)
            .first()
        )
        if row is None:
            return False
        row.is_active = is_active
        row.updated_at = utc_now_iso()
        self._db.commit()
        return True

    def get_decrypted_key(self, org_id: str, provider: str) -> str | None:
        """Return the plaintext of the org's active key for provider.

        Returns:
            Plaintext key, or None if the org has no active key.

        Raises:
            CredentialDecryptionError: If the stored key cannot be decrypted.
        """
        row = (
            self._db.query(AIProviderKey)
            .filter_by(org_id=org_id, provider=provider, is_active=True)
            .order_by(AIProviderKey.created_at)
            .first()
        )
        if row is None:
            return None
        try:
            return decrypt(row.encrypted_key, row.iv, self.master_key)
        except CredentialDecryptionError as e:
            logger.error(
                "Stored %s key %s for org %s could not be decrypted: %s",
                provider, row.id, org_id, e.reason,
            )
            raise CredentialDecryptionError(e.reason, provider=provider) from e

    @staticmethod
    async def test_provider_key(
        provider: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
    ) -> dict[str, Any]:
        """Probe the vendor API with a key.

        Args:
            provider: anthropic, openai, or google.
            api_key: Plaintext key to check.
            client: Optional shared httpx client.

        Returns:
            {"success": bool, "error": str | None}
        """
        if provider not in SUPPORTED_PROVIDERS:
            return {"success": False, "error": f"Unknown provider: {provider}"}

        owns_client = client is None
        http = client or httpx.AsyncClient(timeout=_PROBE_TIMEOUT)
        try:
            if provider == "anthropic":
                response = await http.post(
                    ANTHROPIC_MESSAGES_URL,
                    headers={
                        "x-api-key": api_key,
                        "anthropic-version": ANTHROPIC_VERSION,
                        "content-type": "application/json",
                    },
                    json={
                        "model": "claude-sonnet-4-20250514",
                        "max_tokens": 1,
                        "messages": [{"role": "user", "content": "Hi"}],
                    },
                )
                invalid = response.status_code == 401
            elif provider == "openai":
                response = await http.get(
                    OPENAI_MODELS_URL,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
                invalid = response.status_code == 401
            else:
                response = await http.get(GOOGLE_MODELS_URL, params={"key": api_key})
                invalid = response.status_code in (400, 401, 403)
        except httpx.HTTPError as e:
            logger.warning("%s key probe failed: %s", provider, type(e).__name__)
            return {
                "success": False,
                "error": sanitize_error_message(str(e)) or type(e).__name__,
            }
        finally:
            if owns_client:
                await http.aclose()

        if invalid:
            return {"success": False, "error": "Invalid API key"}
        return {"success": True, "error": None}
