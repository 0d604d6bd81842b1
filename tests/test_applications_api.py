"""
应用、部署环境、API Key、接口定义的 HTTP 接口测试
"""

import pytest

from portal.services.api_keys import api_key_vault_key, generate_api_key, hash_api_key


async def _create_application(client, name: str = "billing") -> str:
    resp = await client.post("/admin/applications", json={"name": name})
    assert resp.status_code == 201
    return resp.json()["id"]


async def _create_environment(client, app_id: str, name: str = "production") -> dict:
    resp = await client.post(f"/admin/applications/{app_id}/environments", json={"name": name})
    assert resp.status_code == 201
    return resp.json()


class TestApplications:
    """应用 CRUD"""

    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        resp = await client.post("/admin/applications", json={
            "name": "billing",
            "description": "计费服务",
            "healthCheckUrl": "https://billing.internal/health",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "ACTIVE"
        assert body["authenticationMethod"] == "none"
        assert body["healthStatus"] == "UNKNOWN"

        resp = await client.get(f"/admin/applications/{body['id']}")
        detail = resp.json()
        assert detail["name"] == "billing"
        assert detail["environments"] == []
        assert detail["apiKeys"] == []
        assert detail["endpoints"] == []

    @pytest.mark.asyncio
    async def test_list_with_counts(self, client):
        app_id = await _create_application(client)
        await _create_environment(client, app_id)
        await client.post(
            f"/admin/applications/{app_id}/endpoints", json={"name": "list", "path": "/v1/items"}
        )

        resp = await client.get("/admin/applications")
        body = resp.json()
        assert body["total"] == 1
        item = body["items"][0]
        assert item["environmentCount"] == 1
        assert item["endpointCount"] == 1
        assert item["apiKeyCount"] == 0

    @pytest.mark.asyncio
    async def test_update(self, client):
        app_id = await _create_application(client)
        resp = await client.patch(
            f"/admin/applications/{app_id}", json={"status": "MAINTENANCE", "name": None}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "MAINTENANCE"
        assert resp.json()["name"] == "billing"

    @pytest.mark.asyncio
    async def test_invalid_status(self, client):
        resp = await client.post("/admin/applications", json={"name": "x", "status": "BROKEN"})
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        resp = await client.get("/admin/applications/missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == "APPLICATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_cascades_and_cleans_vault(self, client, vault_store):
        app_id = await _create_application(client)
        env = await _create_environment(client, app_id)
        await client.put(f"/admin/environments/{env['id']}/security", json={"apiKey": "sk"})
        key = (await client.post(
            f"/admin/applications/{app_id}/api-keys", json={"name": "ci"}
        )).json()
        assert api_key_vault_key(app_id, key["id"]) in vault_store

        resp = await client.delete(f"/admin/applications/{app_id}")
        assert resp.status_code == 204

        assert (await client.get(f"/admin/applications/{app_id}")).status_code == 404
        assert (await client.get(f"/admin/environments/{env['id']}")).status_code == 404
        assert vault_store == {}


class TestEnvironments:
    """部署环境"""

    @pytest.mark.asyncio
    async def test_name_is_lowercased_and_unique(self, client):
        app_id = await _create_application(client)
        env = await _create_environment(client, app_id, "Production")
        assert env["name"] == "production"
        assert env["applicationId"] == app_id

        resp = await client.post(
            f"/admin/applications/{app_id}/environments", json={"name": "PRODUCTION"}
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "ENVIRONMENT_EXISTS"

    @pytest.mark.asyncio
    async def test_same_name_in_other_application(self, client):
        first = await _create_application(client, "a")
        second = await _create_application(client, "b")
        await _create_environment(client, first, "stage")
        await _create_environment(client, second, "stage")

        resp = await client.get(f"/admin/applications/{second}/environments")
        assert [e["name"] for e in resp.json()] == ["stage"]

    @pytest.mark.asyncio
    async def test_update_environment(self, client):
        app_id = await _create_application(client)
        env = await _create_environment(client, app_id)

        resp = await client.patch(
            f"/admin/environments/{env['id']}",
            json={"baseDomain": "https://api.example.com", "healthStatus": "HEALTHY"},
        )
        assert resp.status_code == 200
        assert resp.json()["baseDomain"] == "https://api.example.com"
        assert resp.json()["healthStatus"] == "HEALTHY"

    @pytest.mark.asyncio
    async def test_delete_unbinds_api_keys(self, client, vault_store):
        app_id = await _create_application(client)
        env = await _create_environment(client, app_id)
        await client.put(f"/admin/environments/{env['id']}/security", json={"apiKey": "sk"})
        await client.post(
            f"/admin/applications/{app_id}/api-keys",
            json={"name": "bound", "environmentId": env["id"]},
        )

        resp = await client.delete(f"/admin/environments/{env['id']}")
        assert resp.status_code == 204
        assert f"env_{env['id']}_security_settings" not in vault_store

        keys = (await client.get(f"/admin/applications/{app_id}/api-keys")).json()
        assert len(keys) == 1
        assert keys[0]["environmentId"] is None


class TestApiKeys:
    """API Key"""

    @pytest.mark.asyncio
    async def test_requires_vault(self, client_without_vault):
        app_id = await _create_application(client_without_vault)
        resp = await client_without_vault.post(
            f"/admin/applications/{app_id}/api-keys", json={"name": "ci"}
        )
        assert resp.status_code == 503
        assert resp.json() == {"detail": "No vault provider configured", "code": "VAULT_UNAVAILABLE"}

        keys = await client_without_vault.get(f"/admin/applications/{app_id}/api-keys")
        assert keys.json() == []

    @pytest.mark.asyncio
    async def test_create_plaintext_revoke_delete(self, client, vault_store):
        app_id = await _create_application(client)

        resp = await client.post(
            f"/admin/applications/{app_id}/api-keys", json={"name": "ci", "description": "CI 使用"}
        )
        assert resp.status_code == 201
        created = resp.json()
        token = created["token"]
        assert token.startswith("mcp_key_")
        assert created["prefix"] == token[:16]
        assert vault_store[api_key_vault_key(app_id, created["id"])] == token

        listed = (await client.get(f"/admin/applications/{app_id}/api-keys")).json()
        assert "token" not in listed[0]
        assert listed[0]["status"] == "ACTIVE"

        plain = await client.get(f"/admin/applications/{app_id}/api-keys/{created['id']}/plaintext")
        assert plain.json()["token"] == token

        revoked = await client.post(f"/admin/applications/{app_id}/api-keys/{created['id']}/revoke")
        assert revoked.json()["status"] == "REVOKED"

        resp = await client.delete(f"/admin/applications/{app_id}/api-keys/{created['id']}")
        assert resp.status_code == 204
        assert vault_store == {}

    @pytest.mark.asyncio
    async def test_environment_must_belong_to_application(self, client):
        first = await _create_application(client, "a")
        second = await _create_application(client, "b")
        env = await _create_environment(client, second)

        resp = await client.post(
            f"/admin/applications/{first}/api-keys",
            json={"name": "ci", "environmentId": env["id"]},
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "ENVIRONMENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_plaintext_missing_in_vault(self, client, vault_store):
        app_id = await _create_application(client)
        created = (await client.post(
            f"/admin/applications/{app_id}/api-keys", json={"name": "ci"}
        )).json()
        vault_store.clear()

        resp = await client.get(f"/admin/applications/{app_id}/api-keys/{created['id']}/plaintext")
        assert resp.status_code == 404
        assert resp.json()["code"] == "API_KEY_PLAINTEXT_NOT_FOUND"

    def test_generate_api_key(self):
        raw, hashed, prefix = generate_api_key(prefix="pk_")
        assert raw.startswith("pk_")
        assert hash_api_key(raw) == hashed
        assert prefix == raw[:16]


class TestEndpoints:
    """接口定义（JSON 字段解析）"""

    @pytest.mark.asyncio
    async def test_json_strings_are_parsed(self, client):
        app_id = await _create_application(client)
        resp = await client.post(f"/admin/applications/{app_id}/endpoints", json={
            "name": "get order",
            "method": "GET",
            "path": "/v1/orders/{id}",
            "pathParams": '{"id": {"type": "string"}}',
            "responseBody": {"type": "object"},
            "queryParams": "",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["pathParams"] == {"id": {"type": "string"}}
        assert body["responseBody"] == {"type": "object"}
        assert body["queryParams"] is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_rejected(self, client):
        app_id = await _create_application(client)
        resp = await client.post(f"/admin/applications/{app_id}/endpoints", json={
            "name": "broken",
            "path": "/v1/broken",
            "requestBody": "{not json",
        })
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, client):
        app_id = await _create_application(client)
        endpoint = (await client.post(
            f"/admin/applications/{app_id}/endpoints", json={"name": "e", "path": "/a"}
        )).json()

        resp = await client.patch(
            f"/admin/applications/{app_id}/endpoints/{endpoint['id']}",
            json={"method": "POST", "requestBody": '["a", "b"]'},
        )
        assert resp.json()["method"] == "POST"
        assert resp.json()["requestBody"] == ["a", "b"]

        resp = await client.delete(f"/admin/applications/{app_id}/endpoints/{endpoint['id']}")
        assert resp.status_code == 204

        resp = await client.patch(
            f"/admin/applications/{app_id}/endpoints/{endpoint['id']}", json={"name": "x"}
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "ENDPOINT_NOT_FOUND"
