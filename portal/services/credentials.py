"""
凭据拆分服务

把安全配置拆成两部分：
- sensitive: 写入 Vault 的敏感字段（密钥、Token、密码、私钥）
- non_sensitive: 写入数据库的其余字段

读取时再把 Vault 中的字段合并回 credentials 子对象。

两种拆分方式：
- partition_flat: 扁平结构，按 SENSITIVE_FIELDS 白名单判断
- partition_nested: 嵌套结构，credentials 下的所有非空字段都视为敏感

日志中只记录字段名，绝不记录字段值。
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# 扁平结构中视为敏感的字段
SENSITIVE_FIELDS = frozenset({
    "azureApimSubscriptionKey",
    "awsSecretKey",
    "awsSessionToken",
    "gcpKeyFile",
    "oauth2ClientSecret",
    "jwtSecret",
    "signaturePrivateKey",
    "apiKey",
    "bearerToken",
    "basicAuthPassword",
})

# 旧版顶层字段，读取时复制到 credentials 中保持兼容
LEGACY_PASSTHROUGH_FIELDS = (
    "keyVersion",
    "uniqueIdentifier",
    "signatureAlgorithm",
    "signatureHeader",
    "signatureFormat",
    "includeDynamicFields",
    "tokenUrl",
    "scope",
    "subscriptionId",
    "resourceGroup",
    "region",
    "projectId",
    "apimUrl",
    "username",
)

# 旧版以 JSON 字符串保存的字段
LEGACY_JSON_FIELDS = ("customHeaders", "dynamicFieldsConfig", "customDynamicFields")


@dataclass
class PartitionResult:
    """拆分结果，两个字典的键不相交"""
    sensitive: dict[str, Any] = field(default_factory=dict)
    non_sensitive: dict[str, Any] = field(default_factory=dict)


def environment_vault_key(environment_id: str) -> str:
    """环境安全配置在 Vault 中的键"""
    return f"env_{environment_id}_security_settings"


def application_vault_key(application_id: str) -> str:
    """应用认证凭据在 Vault 中的键"""
    return f"app_{application_id}_auth_credentials"


def is_empty(value: Any) -> bool:
    """None、空字符串和空容器视为空值"""
    if value is None:
        return True
    if isinstance(value, (str, dict, list)):
        return len(value) == 0
    return False


def partition_flat(payload: dict[str, Any]) -> PartitionResult:
    """
    按白名单拆分扁平结构

    白名单中且值非空的字段进入 sensitive，其余（包括白名单中的空值）进入 non_sensitive。
    """
    result = PartitionResult()
    for key, value in payload.items():
        if key in SENSITIVE_FIELDS and not is_empty(value):
            result.sensitive[key] = value
        else:
            result.non_sensitive[key] = value
    _log_partition("flat", result)
    return result


def partition_nested(credentials: dict[str, Any]) -> PartitionResult:
    """
    拆分嵌套结构中的 credentials 子对象

    credentials 下所有非空字段都视为敏感，空值进入 non_sensitive。
    """
    result = PartitionResult()
    for key, value in credentials.items():
        if is_empty(value):
            result.non_sensitive[key] = value
        else:
            result.sensitive[key] = value
    _log_partition("nested", result)
    return result


def _log_partition(variant: str, result: PartitionResult) -> None:
    logger.info(
        f"凭据拆分完成 ({variant}): 敏感字段={sorted(result.sensitive)}, "
        f"非敏感字段={sorted(result.non_sensitive)}"
    )


def decode_legacy_json(value: Any) -> Any:
    """把旧版 JSON 字符串字段解析为对象，无法解析时原样返回"""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def encode_legacy_json(value: Any) -> str | None:
    """写入旧版文本列：对象编码为 JSON 字符串"""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def merge_for_read(
    config: dict[str, Any] | None,
    vault_data: dict[str, Any] | None,
    legacy_columns: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    合并数据库与 Vault 中的凭据，返回 credentials 子对象

    合并顺序：
    1. 数据库中的 credentials 子对象（嵌套结构降级写入或空值字段）
    2. 数据库顶层的敏感字段（扁平结构降级写入）
    3. Vault 中的字段（覆盖前两者）
    4. 旧版顶层字段（仅在 credentials 中不存在时补充）
    5. 旧版 JSON 字符串列解析后的对象
    """
    config = config or {}
    credentials: dict[str, Any] = {}

    nested = config.get("credentials")
    if isinstance(nested, dict):
        credentials.update(nested)

    for key in SENSITIVE_FIELDS:
        if key in config and not is_empty(config[key]):
            credentials[key] = config[key]

    if vault_data:
        credentials.update(vault_data)

    for key in LEGACY_PASSTHROUGH_FIELDS:
        if key in config and key not in credentials:
            credentials[key] = config[key]

    for key, value in (legacy_columns or {}).items():
        if value is not None:
            credentials[key] = decode_legacy_json(value)

    return credentials


def public_config(config: dict[str, Any] | None) -> dict[str, Any]:
    """去掉敏感字段后的顶层配置，可以直接返回给前端"""
    return {
        key: value
        for key, value in (config or {}).items()
        if key != "credentials" and key not in SENSITIVE_FIELDS
    }
