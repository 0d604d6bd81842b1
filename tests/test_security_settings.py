"""
安全配置服务测试

覆盖：
- 有 Vault：敏感字段写入 Vault，数据库只保存引用键
- 无 Vault / Vault 写入失败：降级保存到数据库
- 读取时合并 Vault 与数据库，Vault 读取失败时只返回数据库中的配置
- 应用认证配置的 HTTP 接口
"""

import json
import logging

import pytest

from portal.exceptions import NotFoundError, VaultError
from portal.infra.vault import MemoryVaultProvider, VaultClient
from portal.models import Application, Environment, EnvironmentSecurity
from portal.schemas.environment import SecuritySettingsUpdate
from portal.services import security_settings
from portal.services.credentials import environment_vault_key


class BrokenVaultProvider(MemoryVaultProvider):
    """读写都失败的 Vault"""

    async def store_secret(self, key: str, value: str) -> None:
        raise VaultError("vault is sealed")

    async def get_secret(self, key: str) -> str | None:
        raise VaultError("vault is sealed")


@pytest.fixture
async def environment(db):
    application = Application(name="billing")
    db.add(application)
    await db.flush()
    environment = Environment(application_id=application.id, name="production")
    db.add(environment)
    await db.commit()
    return environment


def _payload(data: dict) -> SecuritySettingsUpdate:
    return SecuritySettingsUpdate.model_validate(data)


class TestEnvironmentSecurityWithVault:
    """已配置 Vault"""

    @pytest.mark.asyncio
    async def test_sensitive_fields_are_stored_in_vault(self, db, vault, vault_store, environment):
        """apiKey 写入 Vault，数据库只保留非敏感字段和引用键"""
        view = await security_settings.put_environment_security(
            db, vault, environment.id,
            _payload({
                "rateLimitEnabled": True,
                "rateLimitRequests": 500,
                "authenticationMethod": "api_key",
                "apiKey": "sk-123",
                "tokenUrl": "https://auth.example.com",
            }),
        )

        key = environment_vault_key(environment.id)
        assert json.loads(vault_store[key]) == {"apiKey": "sk-123"}

        record = await db.get(EnvironmentSecurity, view.id)
        assert record.vault_key == key
        assert "apiKey" not in record.config
        assert record.config["tokenUrl"] == "https://auth.example.com"

        assert view.has_vault_credentials is True
        assert view.credentials["apiKey"] == "sk-123"
        assert view.rate_limit_enabled is True
        assert view.rate_limit_requests == 500
        assert view.rate_limit_window == 60
        assert view.authentication_method == "api_key"

    @pytest.mark.asyncio
    async def test_nested_credentials_are_all_sensitive(self, db, vault, vault_store, environment):
        await security_settings.put_environment_security(
            db, vault, environment.id,
            _payload({"credentials": {"username": "svc", "password": "pw", "hint": ""}}),
        )

        stored = json.loads(vault_store[environment_vault_key(environment.id)])
        assert stored == {"username": "svc", "password": "pw"}

        view = await security_settings.get_environment_security(db, vault, environment.id)
        assert view.credentials["username"] == "svc"
        assert view.credentials["password"] == "pw"
        assert view.credentials["hint"] == ""

    @pytest.mark.asyncio
    async def test_second_put_upserts_same_row(self, db, vault, environment):
        first = await security_settings.put_environment_security(
            db, vault, environment.id, _payload({"rateLimitEnabled": True})
        )
        second = await security_settings.put_environment_security(
            db, vault, environment.id, _payload({"rateLimitWindow": 120})
        )
        assert first.id == second.id
        assert second.rate_limit_enabled is True
        assert second.rate_limit_window == 120

    @pytest.mark.asyncio
    async def test_read_only_fields_are_ignored(self, db, vault, environment):
        """回传 GET 结果时的只读字段不会写入配置"""
        view = await security_settings.put_environment_security(
            db, vault, environment.id,
            _payload({"id": "bogus", "hasVaultCredentials": True, "authenticationMethod": "none"}),
        )
        assert view.id != "bogus"
        assert "hasVaultCredentials" not in view.settings

    @pytest.mark.asyncio
    async def test_legacy_json_columns(self, db, vault, environment):
        view = await security_settings.put_environment_security(
            db, vault, environment.id,
            _payload({"customHeaders": {"X-Tenant": "t1"}}),
        )
        record = await db.get(EnvironmentSecurity, view.id)
        assert record.custom_headers == '{"X-Tenant": "t1"}'
        assert view.credentials["customHeaders"] == {"X-Tenant": "t1"}


class TestEnvironmentSecurityDegraded:
    """未配置 Vault 或 Vault 故障"""

    @pytest.mark.asyncio
    async def test_without_vault_secrets_fall_back_to_database(self, db, no_vault, environment):
        view = await security_settings.put_environment_security(
            db, no_vault, environment.id,
            _payload({"authenticationMethod": "bearer_token", "bearerToken": "tok"}),
        )

        record = await db.get(EnvironmentSecurity, view.id)
        assert record.vault_key is None
        assert record.config["bearerToken"] == "tok"
        assert view.has_vault_credentials is False
        assert view.credentials["bearerToken"] == "tok"
        # 顶层 settings 中不暴露敏感字段
        assert "bearerToken" not in view.settings

    @pytest.mark.asyncio
    async def test_vault_write_failure_falls_back_to_database(self, db, environment):
        broken = VaultClient(provider=BrokenVaultProvider({}))
        view = await security_settings.put_environment_security(
            db, broken, environment.id, _payload({"jwtSecret": "j"})
        )

        record = await db.get(EnvironmentSecurity, view.id)
        assert record.vault_key is None
        assert record.config["jwtSecret"] == "j"

    @pytest.mark.asyncio
    async def test_vault_read_failure_returns_database_view(self, db, vault, environment):
        await security_settings.put_environment_security(
            db, vault, environment.id,
            _payload({"authenticationMethod": "api_key", "apiKey": "sk"}),
        )

        broken = VaultClient(provider=BrokenVaultProvider({}))
        view = await security_settings.get_environment_security(db, broken, environment.id)

        assert view.has_vault_credentials is False
        assert "apiKey" not in view.credentials
        assert view.authentication_method == "api_key"

    @pytest.mark.asyncio
    async def test_missing_settings_raise_not_found(self, db, vault, environment):
        with pytest.raises(NotFoundError) as exc_info:
            await security_settings.get_environment_security(db, vault, environment.id)
        assert exc_info.value.code == "SECURITY_SETTINGS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_environment_raises_not_found(self, db, vault):
        with pytest.raises(NotFoundError) as exc_info:
            await security_settings.put_environment_security(db, vault, "missing", _payload({}))
        assert exc_info.value.code == "ENVIRONMENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_degraded_write_wins_over_previous_vault_entry(
        self, db, vault, no_vault, environment
    ):
        """Vault 写入 A 后无 Vault 写入 B，再次读取得到 B"""
        await security_settings.put_environment_security(
            db, vault, environment.id, _payload({"apiKey": "A"})
        )
        await security_settings.put_environment_security(
            db, no_vault, environment.id, _payload({"apiKey": "B"})
        )

        view = await security_settings.get_environment_security(db, vault, environment.id)

        assert view.credentials["apiKey"] == "B"
        assert view.has_vault_credentials is False
        assert view.vault_key is None

    @pytest.mark.asyncio
    async def test_failed_vault_write_removes_previous_entry(
        self, db, vault, vault_store, environment
    ):
        await security_settings.put_environment_security(
            db, vault, environment.id, _payload({"apiKey": "A"})
        )
        sealed = VaultClient(provider=BrokenVaultProvider(vault_store))
        await security_settings.put_environment_security(
            db, sealed, environment.id, _payload({"apiKey": "B"})
        )

        assert environment_vault_key(environment.id) not in vault_store
        view = await security_settings.get_environment_security(db, vault, environment.id)
        assert view.credentials["apiKey"] == "B"

    @pytest.mark.asyncio
    async def test_degraded_write_logs_warning_without_values(self, db, no_vault, environment, caplog):
        caplog.set_level(logging.INFO)

        await security_settings.put_environment_security(
            db, no_vault, environment.id, _payload({"apiKey": "sk-123", "region": "eu"})
        )

        warnings = [
            r for r in caplog.records
            if r.levelno == logging.WARNING and r.name == "portal.services.security_settings"
        ]
        assert len(warnings) == 1
        assert warnings[0].fields == ["apiKey"]
        assert all("sk-123" not in r.getMessage() for r in caplog.records)


class TestSecurityApi:
    """安全配置 HTTP 接口"""

    @pytest.mark.asyncio
    async def test_environment_security_roundtrip(self, client, vault_store):
        app_resp = await client.post("/admin/applications", json={"name": "crm"})
        app_id = app_resp.json()["id"]
        env_resp = await client.post(
            f"/admin/applications/{app_id}/environments", json={"name": "Production"}
        )
        env_id = env_resp.json()["id"]

        resp = await client.get(f"/admin/environments/{env_id}/security")
        assert resp.status_code == 404

        resp = await client.put(
            f"/admin/environments/{env_id}/security",
            json={"rateLimitEnabled": True, "apiKey": "sk-live"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["hasVaultCredentials"] is True
        assert body["credentials"]["apiKey"] == "sk-live"
        assert environment_vault_key(env_id) in vault_store

        resp = await client.get(f"/admin/environments/{env_id}/security")
        assert resp.json()["credentials"]["apiKey"] == "sk-live"

    @pytest.mark.asyncio
    async def test_application_security_requires_vault(self, client_without_vault):
        app_resp = await client_without_vault.post("/admin/applications", json={"name": "crm"})
        app_id = app_resp.json()["id"]

        resp = await client_without_vault.put(
            f"/admin/applications/{app_id}/security",
            json={"authenticationMethod": "bearer_token", "bearerToken": "tok"},
        )
        assert resp.status_code == 503
        assert resp.json()["code"] == "VAULT_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_application_security_validation(self, client):
        app_resp = await client.post("/admin/applications", json={"name": "crm"})
        app_id = app_resp.json()["id"]

        resp = await client.put(
            f"/admin/applications/{app_id}/security",
            json={"authenticationMethod": "basic_auth", "username": "svc"},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_application_security_stored_in_vault(self, client, vault_store):
        app_resp = await client.post("/admin/applications", json={"name": "crm"})
        app_id = app_resp.json()["id"]

        resp = await client.put(
            f"/admin/applications/{app_id}/security",
            json={"authenticationMethod": "bearer_token", "bearerToken": "tok"},
        )
        assert resp.status_code == 200
        assert json.loads(vault_store[f"app_{app_id}_auth_credentials"]) == {"bearerToken": "tok"}

        resp = await client.get(f"/admin/applications/{app_id}/security")
        body = resp.json()
        assert body["authenticationMethod"] == "bearer_token"
        assert body["credentials"]["bearerToken"] == "tok"
