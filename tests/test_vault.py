"""
Vault 客户端测试

HashiCorp Vault 使用 httpx.MockTransport 模拟 HTTP API。
"""

import json

import httpx
import pytest
from pydantic import ValidationError

from portal.config import Settings
from portal.exceptions import VaultError, VaultUnavailableError
from portal.infra.vault import (
    HashiCorpVaultProvider,
    MemoryVaultProvider,
    VaultClient,
    create_provider,
)


def _hashicorp(handler, mount: str = "secret") -> HashiCorpVaultProvider:
    client = httpx.AsyncClient(
        base_url="http://vault.test",
        transport=httpx.MockTransport(handler),
        headers={"X-Vault-Token": "root"},
    )
    return HashiCorpVaultProvider(
        url="http://vault.test", token="root", mount=mount, path="portal", client=client
    )


class TestHashiCorpVaultProvider:
    """HashiCorp Vault 提供者"""

    @pytest.mark.asyncio
    async def test_kv_v2_store_and_read(self):
        requests: list[httpx.Request] = []
        stored: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "POST":
                stored[request.url.path] = json.loads(request.content)["data"]["value"]
                return httpx.Response(200, json={})
            value = stored.get(request.url.path)
            if value is None:
                return httpx.Response(404, json={"errors": []})
            return httpx.Response(200, json={"data": {"data": {"value": value}}})

        provider = _hashicorp(handler)
        await provider.store_secret("k1", "v1")

        assert requests[0].url.path == "/v1/secret/data/portal/k1"
        assert requests[0].headers["X-Vault-Token"] == "root"
        assert await provider.get_secret("k1") == "v1"
        assert await provider.get_secret("missing") is None

    @pytest.mark.asyncio
    async def test_kv_v1_paths(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.method == "GET":
                return httpx.Response(200, json={"data": {"value": "v1"}})
            return httpx.Response(204)

        provider = _hashicorp(handler, mount="kv")
        await provider.store_secret("k1", "v1")
        assert await provider.get_secret("k1") == "v1"
        assert await provider.delete_secret("k1") is True
        assert paths == ["/v1/kv/portal/k1"] * 3

    @pytest.mark.asyncio
    async def test_kv_v2_delete_removes_metadata(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(204)

        provider = _hashicorp(handler)
        assert await provider.delete_secret("k1") is True
        assert paths == ["/v1/secret/metadata/portal/k1"]

    @pytest.mark.asyncio
    async def test_http_errors_become_vault_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"errors": ["permission denied"]})

        provider = _hashicorp(handler)
        with pytest.raises(VaultError):
            await provider.store_secret("k1", "v1")
        with pytest.raises(VaultError):
            await provider.get_secret("k1")
        assert await provider.delete_secret("k1") is False

    @pytest.mark.asyncio
    async def test_connection_check(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "LIST"
            return httpx.Response(404)

        assert await _hashicorp(handler).test_connection() is True


class TestVaultClient:
    """Vault 客户端（JSON 序列化和无提供者状态）"""

    @pytest.mark.asyncio
    async def test_store_and_get_dict(self):
        store: dict[str, str] = {}
        vault = VaultClient(provider=MemoryVaultProvider(store))

        await vault.store("creds", {"password": "密码"})

        assert json.loads(store["creds"]) == {"password": "密码"}
        assert await vault.get("creds") == {"password": "密码"}
        assert await vault.get("missing") is None

    @pytest.mark.asyncio
    async def test_non_object_secret_is_rejected(self):
        vault = VaultClient(provider=MemoryVaultProvider({"bad": "[1, 2]", "worse": "{oops"}))
        with pytest.raises(VaultError):
            await vault.get("bad")
        with pytest.raises(VaultError):
            await vault.get("worse")

    @pytest.mark.asyncio
    async def test_without_provider(self):
        vault = VaultClient(settings=Settings(vault_provider="none"))
        await vault.init()

        assert vault.has_provider() is False
        assert vault.provider_name is None
        with pytest.raises(VaultUnavailableError):
            await vault.store("k", {"a": 1})
        assert await vault.delete("k") is False
        assert await vault.test_connection() is False

    @pytest.mark.asyncio
    async def test_init_failure_leaves_client_without_provider(self):
        """hashicorp 缺少 URL/Token 时不抛出异常"""
        vault = VaultClient(settings=Settings(vault_provider="hashicorp_vault"))
        await vault.init()
        assert vault.has_provider() is False


class TestCreateProvider:

    def test_memory(self):
        assert isinstance(create_provider(Settings(vault_provider="memory")), MemoryVaultProvider)

    def test_none(self):
        assert create_provider(Settings(vault_provider="none")) is None

    def test_hashicorp(self):
        provider = create_provider(Settings(
            vault_provider="hashicorp_vault",
            vault_url="http://vault:8200",
            vault_token="root",
            vault_mount="kv",
        ))
        assert isinstance(provider, HashiCorpVaultProvider)
        assert provider.is_kv_v2 is False

    def test_unknown_provider_rejected_by_settings(self):
        with pytest.raises(ValidationError):
            Settings(vault_provider="keychain")

    def test_provider_name_is_normalised(self):
        assert Settings(vault_provider=" Memory ").vault_provider == "memory"
        assert create_provider(Settings(vault_provider="")) is None
