"""
Azure Key Vault 提供者

使用 azure-keyvault-secrets 同步客户端，通过 asyncio.to_thread 调用。
Key Vault 的密钥名只允许字母、数字和连字符，写入前把其他字符替换为 "-"：
    env_xxx_security_settings -> env-xxx-security-settings
"""

import asyncio
import logging
import re

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from portal.exceptions import VaultError
from portal.infra.vault import BaseVaultProvider

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9-]")


class AzureKeyVaultProvider(BaseVaultProvider):

    name = "azure_keyvault"

    def __init__(
        self,
        vault_url: str,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        client: SecretClient | None = None,
    ):
        if client is None:
            if tenant_id and client_id and client_secret:
                credential = ClientSecretCredential(tenant_id, client_id, client_secret)
            else:
                credential = DefaultAzureCredential()
            client = SecretClient(vault_url=vault_url.rstrip("/"), credential=credential)
        self._client = client

    @staticmethod
    def secret_name(key: str) -> str:
        return _INVALID_NAME_CHARS.sub("-", key)

    async def store_secret(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._client.set_secret, self.secret_name(key), value)
        except AzureError as e:
            logger.error(f"写入 Azure Key Vault 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to store secret '{key}'") from e

    async def get_secret(self, key: str) -> str | None:
        try:
            secret = await asyncio.to_thread(self._client.get_secret, self.secret_name(key))
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            logger.error(f"读取 Azure Key Vault 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to read secret '{key}'") from e
        return secret.value

    async def delete_secret(self, key: str) -> bool:
        # 软删除：开启清除保护的 Key Vault 中名称会保留到保留期结束
        try:
            await asyncio.to_thread(self._client.begin_delete_secret, self.secret_name(key))
            return True
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            logger.error(f"删除 Azure Key Vault 密钥失败: key={key}, error={type(e).__name__}")
            return False

    def _list_one(self) -> None:
        next(iter(self._client.list_properties_of_secrets()), None)

    async def test_connection(self) -> bool:
        try:
            await asyncio.to_thread(self._list_one)
            return True
        except AzureError as e:
            logger.warning(f"Azure Key Vault 连接测试失败: {type(e).__name__}")
            return False

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)
