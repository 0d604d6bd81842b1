"""
Vault 客户端模块

敏感凭据（API Key 明文、数据库密码、云服务密钥等）统一保存在外部 Vault 中，
数据库只保存引用键。

支持的提供者：
- hashicorp_vault: HashiCorp Vault（KV v1 / KV v2），通过 httpx 调用 HTTP API
- azure_keyvault / aws_secrets_manager / gcp_secret_manager: 云厂商官方 SDK（vault_azure.py 等）
- akeyless: Akeyless REST API（vault_akeyless.py）
- memory: 进程内存储，仅用于开发和测试
- none: 不配置 Vault，调用方需要自行降级

使用示例：
    from portal.infra.vault import VaultClient

    vault = VaultClient()
    await vault.init()
    if vault.has_provider():
        await vault.store("env_xxx_security_settings", {"apiKey": "sk-123"})
        data = await vault.get("env_xxx_security_settings")

在路由中通过依赖注入获取（每个请求独立的客户端）：
    async def handler(vault: VaultClient = Depends(get_vault)): ...
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from portal.config import Settings, get_settings
from portal.exceptions import VaultError, VaultUnavailableError

logger = logging.getLogger(__name__)


class BaseVaultProvider(ABC):
    """Vault 提供者基类，键值均为字符串"""

    name: str = "base"

    @abstractmethod
    async def store_secret(self, key: str, value: str) -> None:
        """写入密钥，失败抛出 VaultError"""

    @abstractmethod
    async def get_secret(self, key: str) -> str | None:
        """读取密钥，不存在返回 None"""

    @abstractmethod
    async def delete_secret(self, key: str) -> bool:
        """删除密钥"""

    @abstractmethod
    async def test_connection(self) -> bool:
        """测试连通性"""

    async def close(self) -> None:
        """释放底层连接"""


# 进程内共享存储，memory 提供者的默认后端
_MEMORY_STORE: dict[str, str] = {}


class MemoryVaultProvider(BaseVaultProvider):
    """内存 Vault（开发/测试用）"""

    name = "memory"

    def __init__(self, store: dict[str, str] | None = None):
        self._store = _MEMORY_STORE if store is None else store

    async def store_secret(self, key: str, value: str) -> None:
        self._store[key] = value

    async def get_secret(self, key: str) -> str | None:
        return self._store.get(key)

    async def delete_secret(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    async def test_connection(self) -> bool:
        return True


class HashiCorpVaultProvider(BaseVaultProvider):
    """
    HashiCorp Vault 提供者

    mount 为 "secret" 时使用 KV v2：
        写入：POST {url}/v1/{mount}/data/{path}/{key}  body={"data": {"value": ...}}
        读取：GET  同上，结果位于 data.data.value
    其他 mount 使用 KV v1：
        写入：POST {url}/v1/{mount}/{path}/{key}       body={"value": ...}
        读取：GET  同上，结果位于 data.value
    """

    name = "hashicorp_vault"

    def __init__(
        self,
        url: str,
        token: str,
        mount: str = "secret",
        path: str = "mcp-gateway",
        namespace: str | None = None,
        timeout: float = 10.0,
        verify: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        self.mount = mount
        self.path = path.strip("/")
        headers = {"X-Vault-Token": token}
        if namespace:
            headers["X-Vault-Namespace"] = namespace
        self._client = client or httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            verify=verify,
        )

    @property
    def is_kv_v2(self) -> bool:
        return self.mount == "secret"

    def _data_path(self, key: str) -> str:
        if self.is_kv_v2:
            return f"/v1/{self.mount}/data/{self.path}/{key}"
        return f"/v1/{self.mount}/{self.path}/{key}"

    async def store_secret(self, key: str, value: str) -> None:
        body = {"data": {"value": value}} if self.is_kv_v2 else {"value": value}
        try:
            response = await self._client.post(self._data_path(key), json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"写入 Vault 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to store secret '{key}'") from e

    async def get_secret(self, key: str) -> str | None:
        try:
            response = await self._client.get(self._data_path(key))
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"读取 Vault 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to read secret '{key}'") from e

        data = response.json().get("data") or {}
        if self.is_kv_v2:
            data = data.get("data") or {}
        return data.get("value")

    async def delete_secret(self, key: str) -> bool:
        # KV v2 删除 metadata 才会清除全部版本
        if self.is_kv_v2:
            url = f"/v1/{self.mount}/metadata/{self.path}/{key}"
        else:
            url = self._data_path(key)
        try:
            response = await self._client.delete(url)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"删除 Vault 密钥失败: key={key}, error={type(e).__name__}")
            return False

    async def test_connection(self) -> bool:
        if self.is_kv_v2:
            url = f"/v1/{self.mount}/metadata/{self.path}"
        else:
            url = f"/v1/{self.mount}/{self.path}"
        try:
            response = await self._client.request("LIST", url)
        except httpx.HTTPError as e:
            logger.warning(f"Vault 连接测试失败: {type(e).__name__}")
            return False
        # 路径下还没有任何密钥时返回 404，同样说明 Vault 可达且 Token 有效
        return response.status_code in (200, 404)

    async def close(self) -> None:
        await self._client.aclose()


def _require(settings: Settings, *fields: str) -> None:
    missing = [name.upper() for name in fields if not getattr(settings, name)]
    if missing:
        raise ValueError(f"{settings.vault_provider} 缺少配置: {', '.join(missing)}")


def create_provider(settings: Settings) -> BaseVaultProvider | None:
    """
    根据 vault_provider 创建提供者，none 时返回 None

    云厂商 SDK 按需导入，只加载实际使用的提供者。

    Raises:
        ValueError: 所选提供者缺少必要配置
    """
    provider = settings.vault_provider
    if provider == "none":
        return None
    if provider == "memory":
        return MemoryVaultProvider()

    if provider == "azure_keyvault":
        from portal.infra.vault_azure import AzureKeyVaultProvider

        _require(settings, "azure_keyvault_url")
        return AzureKeyVaultProvider(
            vault_url=settings.azure_keyvault_url,
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
        )

    if provider == "aws_secrets_manager":
        from portal.infra.vault_aws import AWSSecretsManagerProvider

        _require(settings, "aws_region")
        return AWSSecretsManagerProvider(
            region=settings.aws_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            session_token=settings.aws_session_token,
        )

    if provider == "gcp_secret_manager":
        from portal.infra.vault_gcp import GCPSecretManagerProvider

        _require(settings, "gcp_project_id")
        return GCPSecretManagerProvider(
            project_id=settings.gcp_project_id,
            credentials_json=settings.gcp_credentials_json,
        )

    if provider == "akeyless":
        from portal.infra.vault_akeyless import AkeylessProvider

        _require(settings, "akeyless_access_id", "akeyless_access_key")
        return AkeylessProvider(
            access_id=settings.akeyless_access_id,
            access_key=settings.akeyless_access_key,
            url=settings.akeyless_url,
            path=settings.akeyless_path,
            timeout=settings.vault_timeout,
        )

    _require(settings, "vault_url", "vault_token")
    return HashiCorpVaultProvider(
        url=settings.vault_url,
        token=settings.vault_token,
        mount=settings.vault_mount,
        path=settings.vault_path,
        namespace=settings.vault_namespace,
        timeout=settings.vault_timeout,
        verify=not settings.vault_skip_verify,
    )


class VaultClient:
    """
    Vault 客户端

    在提供者之上封装字典序列化。init() 失败不会抛出异常，
    客户端会处于"无提供者"状态，调用方通过 has_provider() 判断是否降级。
    """

    def __init__(
        self,
        settings: Settings | None = None,
        provider: BaseVaultProvider | None = None,
    ):
        self._settings = settings or get_settings()
        self._provider = provider
        self._initialized = provider is not None

    async def init(self) -> None:
        """初始化提供者（幂等）"""
        if self._initialized:
            return
        self._initialized = True
        try:
            self._provider = create_provider(self._settings)
        except Exception as e:
            logger.warning(f"Vault 初始化失败，将以无 Vault 模式运行: {e}")
            self._provider = None
            return
        if self._provider:
            logger.debug(f"Vault 提供者已初始化: {self._provider.name}")

    def has_provider(self) -> bool:
        return self._provider is not None

    @property
    def provider_name(self) -> str | None:
        return self._provider.name if self._provider else None

    def _require_provider(self) -> BaseVaultProvider:
        if self._provider is None:
            raise VaultUnavailableError("No vault provider configured")
        return self._provider

    async def store(self, key: str, data: dict[str, Any]) -> None:
        """以 JSON 形式写入一组凭据"""
        provider = self._require_provider()
        await provider.store_secret(key, json.dumps(data, ensure_ascii=False))

    async def get(self, key: str) -> dict[str, Any] | None:
        """读取一组凭据，不存在返回 None"""
        provider = self._require_provider()
        raw = await provider.get_secret(key)
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise VaultError(f"Secret '{key}' is not valid JSON") from e
        if not isinstance(value, dict):
            raise VaultError(f"Secret '{key}' is not a JSON object")
        return value

    async def store_value(self, key: str, value: str) -> None:
        """写入单个字符串值"""
        await self._require_provider().store_secret(key, value)

    async def get_value(self, key: str) -> str | None:
        """读取单个字符串值"""
        return await self._require_provider().get_secret(key)

    async def delete(self, key: str) -> bool:
        if self._provider is None:
            return False
        return await self._provider.delete_secret(key)

    async def test_connection(self) -> bool:
        if self._provider is None:
            return False
        return await self._provider.test_connection()

    async def close(self) -> None:
        if self._provider is not None:
            await self._provider.close()


async def get_vault() -> AsyncGenerator[VaultClient, None]:
    """
    获取 Vault 客户端（FastAPI 依赖注入函数）

    每个请求创建独立的客户端，请求结束后释放连接。
    """
    client = VaultClient()
    await client.init()
    try:
        yield client
    finally:
        await client.close()
