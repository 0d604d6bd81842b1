"""
Akeyless 提供者

通过 httpx 调用 Akeyless REST API（v2）：
    POST /auth               {"access-type": "access_key", "access-id", "access-key"} -> {"token"}
    POST /get-secret-value   {"names": [name], "token"} -> {name: value}
    POST /update-secret-val  {"name", "value", "token"}，密钥不存在时改用 /create-secret
    POST /delete-item        {"name", "token", "delete-immediately": true}

密钥名为 {akeyless_path}/{key}，key 中除字母、数字、"_"、"-" 以外的字符替换为 "-"。
认证 Token 在同一个提供者实例内复用。
"""

import logging
import re
from typing import Any

import httpx

from portal.exceptions import VaultError
from portal.infra.vault import BaseVaultProvider

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class AkeylessProvider(BaseVaultProvider):

    name = "akeyless"

    def __init__(
        self,
        access_id: str,
        access_key: str,
        url: str = "https://api.akeyless.io",
        path: str = "/mcp/secrets",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.access_id = access_id
        self.access_key = access_key
        self.path = "/" + path.strip("/")
        self._token: str | None = None
        self._client = client or httpx.AsyncClient(base_url=url.rstrip("/"), timeout=timeout)

    def secret_name(self, key: str) -> str:
        return f"{self.path}/{_INVALID_NAME_CHARS.sub('-', key)}"

    async def _authenticate(self) -> str:
        if self._token:
            return self._token
        response = await self._client.post("/auth", json={
            "access-type": "access_key",
            "access-id": self.access_id,
            "access-key": self.access_key,
        })
        response.raise_for_status()
        token = response.json().get("token")
        if not token:
            raise VaultError("Akeyless authentication returned no token")
        self._token = token
        return token

    async def _call(self, endpoint: str, body: dict[str, Any]) -> httpx.Response:
        token = await self._authenticate()
        return await self._client.post(endpoint, json={**body, "token": token})

    async def store_secret(self, key: str, value: str) -> None:
        name = self.secret_name(key)
        try:
            response = await self._call("/update-secret-val", {"name": name, "value": value})
            if response.status_code == 404:
                response = await self._call("/create-secret", {"name": name, "value": value})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"写入 Akeyless 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to store secret '{key}'") from e

    async def get_secret(self, key: str) -> str | None:
        name = self.secret_name(key)
        try:
            response = await self._call("/get-secret-value", {"names": [name]})
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"读取 Akeyless 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to read secret '{key}'") from e
        return (response.json() or {}).get(name)

    async def delete_secret(self, key: str) -> bool:
        try:
            response = await self._call("/delete-item", {
                "name": self.secret_name(key),
                "delete-immediately": True,
                "delete-in-days": -1,
            })
        except (httpx.HTTPError, VaultError) as e:
            logger.error(f"删除 Akeyless 密钥失败: key={key}, error={type(e).__name__}")
            return False
        return response.is_success

    async def test_connection(self) -> bool:
        # 能换取 Token 即视为可用
        self._token = None
        try:
            await self._authenticate()
            return True
        except (httpx.HTTPError, VaultError) as e:
            logger.warning(f"Akeyless 连接测试失败: {type(e).__name__}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
