"""
Google Cloud Secret Manager 提供者

每个键对应一个 Secret，值保存为最新版本：
    projects/{project}/secrets/{secret_id}/versions/latest
Secret ID 只允许 [a-zA-Z0-9_-]，其他字符替换为 "_"。
"""

import asyncio
import json
import logging
import re
from typing import Any

from google.api_core import exceptions as gcp_exceptions
from google.cloud import secretmanager
from google.oauth2 import service_account

from portal.exceptions import VaultError
from portal.infra.vault import BaseVaultProvider

logger = logging.getLogger(__name__)

_INVALID_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class GCPSecretManagerProvider(BaseVaultProvider):

    name = "gcp_secret_manager"

    def __init__(
        self,
        project_id: str,
        credentials_json: str | None = None,
        client: Any = None,
    ):
        if client is None:
            credentials = None
            if credentials_json:
                credentials = service_account.Credentials.from_service_account_info(
                    json.loads(credentials_json)
                )
            client = secretmanager.SecretManagerServiceClient(credentials=credentials)
        self._client = client
        self.project_id = project_id

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}"

    def secret_path(self, key: str) -> str:
        return f"{self.parent}/secrets/{_INVALID_ID_CHARS.sub('_', key)}"

    def _store_sync(self, key: str, value: str) -> None:
        name = self.secret_path(key)
        try:
            self._client.get_secret(request={"name": name})
        except gcp_exceptions.NotFound:
            self._client.create_secret(request={
                "parent": self.parent,
                "secret_id": name.rsplit("/", 1)[-1],
                "secret": {"replication": {"automatic": {}}},
            })
        self._client.add_secret_version(request={
            "parent": name,
            "payload": {"data": value.encode("utf-8")},
        })

    async def store_secret(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._store_sync, key, value)
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"写入 GCP Secret Manager 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to store secret '{key}'") from e

    async def get_secret(self, key: str) -> str | None:
        try:
            response = await asyncio.to_thread(
                self._client.access_secret_version,
                request={"name": f"{self.secret_path(key)}/versions/latest"},
            )
        except gcp_exceptions.NotFound:
            return None
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"读取 GCP Secret Manager 失败: key={key}, error={type(e).__name__}")
            raise VaultError(f"Failed to read secret '{key}'") from e
        return response.payload.data.decode("utf-8")

    async def delete_secret(self, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self._client.delete_secret, request={"name": self.secret_path(key)}
            )
            return True
        except gcp_exceptions.NotFound:
            return False
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"删除 GCP 密钥失败: key={key}, error={type(e).__name__}")
            return False

    def _list_one(self) -> None:
        pager = self._client.list_secrets(request={"parent": self.parent, "page_size": 1})
        next(iter(pager), None)

    async def test_connection(self) -> bool:
        try:
            await asyncio.to_thread(self._list_one)
            return True
        except gcp_exceptions.GoogleAPIError as e:
            logger.warning(f"GCP Secret Manager 连接测试失败: {type(e).__name__}")
            return False

    async def close(self) -> None:
        await asyncio.to_thread(self._client.transport.close)
