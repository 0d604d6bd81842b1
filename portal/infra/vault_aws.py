"""
AWS Secrets Manager 提供者

boto3 同步客户端，通过 asyncio.to_thread 调用。
写入时先 create_secret，密钥已存在再 put_secret_value 写入新版本。
"""

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from portal.exceptions import VaultError
from portal.infra.vault import BaseVaultProvider

logger = logging.getLogger(__name__)


def _error_code(error: Exception) -> str | None:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


class AWSSecretsManagerProvider(BaseVaultProvider):

    name = "aws_secrets_manager"

    def __init__(
        self,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
        client: Any = None,
    ):
        if client is None:
            client = boto3.client(
                "secretsmanager",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                aws_session_token=session_token,
            )
        self._client = client

    def _store_sync(self, key: str, value: str) -> None:
        try:
            self._client.create_secret(Name=key, SecretString=value)
        except ClientError as e:
            if _error_code(e) != "ResourceExistsException":
                raise
            self._client.put_secret_value(SecretId=key, SecretString=value)

    async def store_secret(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._store_sync, key, value)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"写入 AWS Secrets Manager 失败: key={key}, error={_error_code(e) or type(e).__name__}")
            raise VaultError(f"Failed to store secret '{key}'") from e

    async def get_secret(self, key: str) -> str | None:
        try:
            response = await asyncio.to_thread(self._client.get_secret_value, SecretId=key)
        except (BotoCoreError, ClientError) as e:
            if _error_code(e) == "ResourceNotFoundException":
                return None
            logger.error(f"读取 AWS Secrets Manager 失败: key={key}, error={_error_code(e) or type(e).__name__}")
            raise VaultError(f"Failed to read secret '{key}'") from e
        return response.get("SecretString")

    async def delete_secret(self, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self._client.delete_secret,
                SecretId=key,
                ForceDeleteWithoutRecovery=True,
            )
            return True
        except (BotoCoreError, ClientError) as e:
            if _error_code(e) != "ResourceNotFoundException":
                logger.error(f"删除 AWS 密钥失败: key={key}, error={_error_code(e) or type(e).__name__}")
            return False

    async def test_connection(self) -> bool:
        try:
            await asyncio.to_thread(self._client.list_secrets, MaxResults=1)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"AWS Secrets Manager 连接测试失败: {_error_code(e) or type(e).__name__}")
            return False

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)
