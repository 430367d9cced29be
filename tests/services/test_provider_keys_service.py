"""Tests for ProviderKeyService."""

import httpx
import pytest

from nexus.db.models import AIProviderKey
from nexus.errors import CredentialDecryptionError, UnsupportedProviderError, ValidationError
from nexus.services.provider_keys_service import ProviderKeyService


@pytest.fixture
def svc(db_session, master_key):
    return ProviderKeyService(db_session, master_key)


class TestAddAndList:
    def test_stores_ciphertext_not_plaintext(self, svc, db_session):
        svc.add_key("org-1", "anthropic", "sk-ant-abcdef", "prod")
        row = db_session.query(AIProviderKey).one()
        assert "sk-ant-abcdef" not in row.encrypted_key
        assert len(bytes.fromhex(row.iv)) == 12

    def test_list_masks_values(self, svc):
        svc.add_key("org-1", "openai", "sk-live-abcdef", "prod")
        (listed,) = svc.list_keys("org-1")
        assert listed["provider"] == "openai"
        assert listed["maskedKey"].startswith("••••••••")
        assert "sk-live" not in str(listed)

    def test_list_is_org_scoped(self, svc):
        svc.add_key("org-1", "openai", "sk-1", "prod")
        assert svc.list_keys("org-2") == []

    def test_rejects_unknown_provider(self, svc):
        with pytest.raises(UnsupportedProviderError):
            svc.add_key("org-1", "mistral", "k", "prod")

    def test_rejects_empty_key(self, svc):
        with pytest.raises(ValidationError):
            svc.add_key("org-1", "openai", "   ", "prod")


class TestDecryptedLookup:
    def test_returns_plaintext_of_active_key(self, svc):
        svc.add_key("org-1", "google", "AIza-secret", "prod")
        assert svc.get_decrypted_key("org-1", "google") == "AIza-secret"

    def test_none_when_missing(self, svc):
        assert svc.get_decrypted_key("org-1", "anthropic") is None

    def test_inactive_keys_are_ignored(self, svc):
        added = svc.add_key("org-1", "anthropic", "sk-ant-1", "prod")
        assert svc.set_active("org-1", added["id"], False) is True
        assert svc.get_decrypted_key("org-1", "anthropic") is None

    def test_wrong_master_key_fails_closed(self, svc, db_session):
        svc.add_key("org-1", "anthropic", "sk-ant-1", "prod")
        other = ProviderKeyService(db_session, b"\x00" * 32)
        with pytest.raises(CredentialDecryptionError) as exc_info:
            other.get_decrypted_key("org-1", "anthropic")
        assert exc_info.value.provider == "anthropic"

    def test_master_key_loaded_lazily_from_env(self, db_session, master_key, monkeypatch):
        monkeypatch.setenv("NEXUS_ENCRYPTION_KEY", master_key.hex())
        ProviderKeyService(db_session, master_key).add_key("org-1", "openai", "sk-x", "a")
        assert ProviderKeyService(db_session).get_decrypted_key("org-1", "openai") == "sk-x"


class TestRemove:
    def test_remove(self, svc):
        added = svc.add_key("org-1", "openai", "sk-1", "prod")
        assert svc.remove_key("org-2", added["id"]) is False
        assert svc.remove_key("org-1", added["id"]) is True
        assert svc.list_keys("org-1") == []


def _client(status_code: int, seen: list[httpx.Request]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json={})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestProbe:
    @pytest.mark.asyncio
    async def test_anthropic_valid(self):
        seen: list[httpx.Request] = []
        async with _client(200, seen) as client:
            result = await ProviderKeyService.test_provider_key("anthropic", "sk-ant-1", client)
        assert result == {"success": True, "error": None}
        assert seen[0].headers["x-api-key"] == "sk-ant-1"
        assert seen[0].method == "POST"

    @pytest.mark.asyncio
    async def test_openai_invalid(self):
        seen: list[httpx.Request] = []
        async with _client(401, seen) as client:
            result = await ProviderKeyService.test_provider_key("openai", "sk-1", client)
        assert result == {"success": False, "error": "Invalid API key"}
        assert seen[0].headers["authorization"] == "Bearer sk-1"

    @pytest.mark.asyncio
    async def test_google_invalid_on_400(self):
        seen: list[httpx.Request] = []
        async with _client(400, seen) as client:
            result = await ProviderKeyService.test_provider_key("google", "AIza-1", client)
        assert result["success"] is False
        assert seen[0].url.params["key"] == "AIza-1"

    @pytest.mark.asyncio
    async def test_transport_error_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await ProviderKeyService.test_provider_key("openai", "sk-1", client)
        assert result["success"] is False
        assert "connection refused" in result["error"]

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        result = await ProviderKeyService.test_provider_key("mistral", "k")
        assert result == {"success": False, "error": "Unknown provider: mistral"}
