"""
云厂商 Vault 提供者测试

Azure / AWS / GCP 注入 MagicMock 客户端，异常使用各 SDK 自己的类型；
Akeyless 使用 httpx.MockTransport 模拟 REST API。
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest
from azure.core.exceptions import AzureError, ResourceNotFoundError
from botocore.exceptions import ClientError
from google.api_core import exceptions as gcp_exceptions

from portal.config import Settings
from portal.exceptions import VaultError
from portal.infra.vault import VaultClient, create_provider
from portal.infra.vault_akeyless import AkeylessProvider
from portal.infra.vault_aws import AWSSecretsManagerProvider
from portal.infra.vault_azure import AzureKeyVaultProvider
from portal.infra.vault_gcp import GCPSecretManagerProvider


def _aws_error(code: str, operation: str = "GetSecretValue") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestAzureKeyVaultProvider:

    @pytest.mark.asyncio
    async def test_store_and_read_use_sanitised_name(self):
        client = MagicMock()
        client.get_secret.return_value = MagicMock(value='{"apiKey": "sk"}')
        provider = AzureKeyVaultProvider(vault_url="https://kv.vault.azure.net", client=client)

        await provider.store_secret("env_1_security_settings", '{"apiKey": "sk"}')
        value = await provider.get_secret("env_1_security_settings")

        client.set_secret.assert_called_once_with("env-1-security-settings", '{"apiKey": "sk"}')
        client.get_secret.assert_called_once_with("env-1-security-settings")
        assert value == '{"apiKey": "sk"}'

    @pytest.mark.asyncio
    async def test_missing_secret_returns_none(self):
        client = MagicMock()
        client.get_secret.side_effect = ResourceNotFoundError("SecretNotFound")
        provider = AzureKeyVaultProvider(vault_url="https://kv", client=client)

        assert await provider.get_secret("k") is None

    @pytest.mark.asyncio
    async def test_sdk_errors_become_vault_errors(self):
        client = MagicMock()
        client.set_secret.side_effect = AzureError("forbidden")
        client.list_properties_of_secrets.side_effect = AzureError("forbidden")
        provider = AzureKeyVaultProvider(vault_url="https://kv", client=client)

        with pytest.raises(VaultError):
            await provider.store_secret("k", "v")
        assert await provider.test_connection() is False

    @pytest.mark.asyncio
    async def test_delete(self):
        client = MagicMock()
        provider = AzureKeyVaultProvider(vault_url="https://kv", client=client)

        assert await provider.delete_secret("api_key_a_b") is True
        client.begin_delete_secret.assert_called_once_with("api-key-a-b")

        client.begin_delete_secret.side_effect = ResourceNotFoundError("gone")
        assert await provider.delete_secret("api_key_a_b") is False


class TestAWSSecretsManagerProvider:

    @pytest.mark.asyncio
    async def test_existing_secret_gets_new_version(self):
        client = MagicMock()
        client.create_secret.side_effect = _aws_error("ResourceExistsException", "CreateSecret")
        provider = AWSSecretsManagerProvider(client=client)

        await provider.store_secret("env_1_security_settings", "v2")

        client.put_secret_value.assert_called_once_with(
            SecretId="env_1_security_settings", SecretString="v2"
        )

    @pytest.mark.asyncio
    async def test_read(self):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": "v1"}
        provider = AWSSecretsManagerProvider(client=client)

        assert await provider.get_secret("k") == "v1"

        client.get_secret_value.side_effect = _aws_error("ResourceNotFoundException")
        assert await provider.get_secret("k") is None

        client.get_secret_value.side_effect = _aws_error("AccessDeniedException")
        with pytest.raises(VaultError):
            await provider.get_secret("k")

    @pytest.mark.asyncio
    async def test_delete_without_recovery_window(self):
        client = MagicMock()
        provider = AWSSecretsManagerProvider(client=client)

        assert await provider.delete_secret("k") is True
        client.delete_secret.assert_called_once_with(SecretId="k", ForceDeleteWithoutRecovery=True)

    @pytest.mark.asyncio
    async def test_vault_client_round_trip(self):
        stored: dict[str, str] = {}
        client = MagicMock()
        client.create_secret.side_effect = lambda Name, SecretString: stored.update({Name: SecretString})
        client.get_secret_value.side_effect = lambda SecretId: {"SecretString": stored[SecretId]}
        vault = VaultClient(provider=AWSSecretsManagerProvider(client=client))

        await vault.store("data_agent_1_credentials", {"password": "pw"})

        assert await vault.get("data_agent_1_credentials") == {"password": "pw"}


class TestGCPSecretManagerProvider:

    @pytest.mark.asyncio
    async def test_store_creates_missing_secret(self):
        client = MagicMock()
        client.get_secret.side_effect = gcp_exceptions.NotFound("missing")
        provider = GCPSecretManagerProvider(project_id="acme", client=client)

        await provider.store_secret("api_key_a.b", "v")

        create_request = client.create_secret.call_args.kwargs["request"]
        assert create_request["parent"] == "projects/acme"
        assert create_request["secret_id"] == "api_key_a_b"
        client.add_secret_version.assert_called_once_with(request={
            "parent": "projects/acme/secrets/api_key_a_b",
            "payload": {"data": b"v"},
        })

    @pytest.mark.asyncio
    async def test_store_existing_secret_only_adds_version(self):
        client = MagicMock()
        provider = GCPSecretManagerProvider(project_id="acme", client=client)

        await provider.store_secret("k", "v")

        client.create_secret.assert_not_called()
        client.add_secret_version.assert_called_once()

    @pytest.mark.asyncio
    async def test_read_latest_version(self):
        client = MagicMock()
        client.access_secret_version.return_value = MagicMock(payload=MagicMock(data=b"v1"))
        provider = GCPSecretManagerProvider(project_id="acme", client=client)

        assert await provider.get_secret("k") == "v1"
        client.access_secret_version.assert_called_once_with(
            request={"name": "projects/acme/secrets/k/versions/latest"}
        )

        client.access_secret_version.side_effect = gcp_exceptions.NotFound("missing")
        assert await provider.get_secret("k") is None

        client.access_secret_version.side_effect = gcp_exceptions.PermissionDenied("denied")
        with pytest.raises(VaultError):
            await provider.get_secret("k")


class TestAkeylessProvider:

    @staticmethod
    def _provider(handler) -> AkeylessProvider:
        client = httpx.AsyncClient(
            base_url="https://akeyless.test", transport=httpx.MockTransport(handler)
        )
        return AkeylessProvider(
            access_id="p-123", access_key="secret", path="/portal/", client=client
        )

    @pytest.mark.asyncio
    async def test_store_creates_then_reads(self):
        calls: list[tuple[str, dict]] = []
        stored: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            calls.append((request.url.path, body))
            if request.url.path == "/auth":
                return httpx.Response(200, json={"token": "t-1"})
            assert body["token"] == "t-1"
            if request.url.path == "/update-secret-val":
                return httpx.Response(404, json={"error": "item not found"})
            if request.url.path == "/create-secret":
                stored[body["name"]] = body["value"]
                return httpx.Response(200, json={})
            if request.url.path == "/get-secret-value":
                name = body["names"][0]
                if name not in stored:
                    return httpx.Response(404, json={})
                return httpx.Response(200, json={name: stored[name]})
            return httpx.Response(400)

        provider = self._provider(handler)
        await provider.store_secret("env_1.security", "v1")

        assert stored == {"/portal/env_1-security": "v1"}
        assert await provider.get_secret("env_1.security") == "v1"
        assert await provider.get_secret("missing") is None
        assert [path for path, _ in calls].count("/auth") == 1
        assert calls[0][1]["access-id"] == "p-123"

    @pytest.mark.asyncio
    async def test_failed_auth(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "unauthorized"})

        provider = self._provider(handler)

        assert await provider.test_connection() is False
        with pytest.raises(VaultError):
            await provider.store_secret("k", "v")


class TestCloudProviderFactory:

    def test_akeyless(self):
        provider = create_provider(Settings(
            vault_provider="akeyless", akeyless_access_id="p-1", akeyless_access_key="k"
        ))
        assert isinstance(provider, AkeylessProvider)
        assert provider.secret_name("a") == "/mcp/secrets/a"

    def test_azure_with_client_secret(self):
        provider = create_provider(Settings(
            vault_provider="azure_keyvault",
            azure_keyvault_url="https://kv.vault.azure.net/",
            azure_tenant_id="t",
            azure_client_id="c",
            azure_client_secret="s",
        ))
        assert isinstance(provider, AzureKeyVaultProvider)

    def test_aws(self):
        provider = create_provider(Settings(vault_provider="aws_secrets_manager", aws_region="eu-west-1"))
        assert isinstance(provider, AWSSecretsManagerProvider)

    def test_gcp(self):
        with patch("portal.infra.vault_gcp.secretmanager.SecretManagerServiceClient") as client_cls:
            provider = create_provider(Settings(vault_provider="gcp_secret_manager", gcp_project_id="acme"))
        assert isinstance(provider, GCPSecretManagerProvider)
        client_cls.assert_called_once_with(credentials=None)

    @pytest.mark.parametrize("provider", [
        "azure_keyvault", "aws_secrets_manager", "gcp_secret_manager", "akeyless",
    ])
    def test_missing_settings(self, provider):
        with pytest.raises(ValueError):
            create_provider(Settings(vault_provider=provider))

    @pytest.mark.asyncio
    async def test_misconfigured_provider_degrades(self):
        client = VaultClient(settings=Settings(vault_provider="gcp_secret_manager"))
        await client.init()
        assert client.has_provider() is False
