"""
数据代理 HTTP 接口测试

使用未注册驱动的连接类型（oracle），表导入走请求中的 columnDetails。
"""

import pytest

from portal.services.data_agents import agent_vault_key


async def _create_agent(client, **overrides) -> dict:
    payload = {
        "name": "warehouse",
        "connectionType": "oracle",
        "connectionConfig": {"host": "db.internal", "port": 1521, "username": "reader"},
    }
    payload.update(overrides)
    resp = await client.post("/admin/data-agents", json=payload)
    assert resp.status_code == 201
    return resp.json()


async def _create_environment(client, agent_id: str, name: str = "production", **extra) -> dict:
    resp = await client.post(
        f"/admin/data-agents/{agent_id}/environments", json={"name": name, **extra}
    )
    assert resp.status_code == 201
    return resp.json()


def _table(name: str, *columns: dict) -> dict:
    return {"schemaName": "sales", "tableName": name, "columnDetails": list(columns)}


class TestDataAgents:
    """数据代理 CRUD"""

    @pytest.mark.asyncio
    async def test_secrets_move_to_vault(self, client, vault_store):
        agent = await _create_agent(client, connectionConfig={
            "host": "db.internal",
            "username": "reader",
            "password": "s3cret",
        })

        assert agent["status"] == "INACTIVE"
        assert agent["connectionType"] == "oracle"
        assert "password" not in agent["connectionConfig"]
        assert agent["vaultKey"] == agent_vault_key(agent["id"])
        assert '"s3cret"' in vault_store[agent["vaultKey"]]

    @pytest.mark.asyncio
    async def test_credentials_without_vault(self, client_without_vault):
        resp = await client_without_vault.post("/admin/data-agents", json={
            "name": "warehouse",
            "connectionType": "postgres",
            "credentials": {"password": "s3cret"},
        })
        assert resp.status_code == 503
        assert resp.json()["code"] == "VAULT_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_without_secrets_no_vault_needed(self, client_without_vault):
        agent = await _create_agent(client_without_vault)
        assert agent["vaultKey"] is None

    @pytest.mark.asyncio
    async def test_update_and_list(self, client):
        agent = await _create_agent(client)
        resp = await client.patch(
            f"/admin/data-agents/{agent['id']}",
            json={"description": "销售数仓", "connectionType": " Postgres "},
        )
        assert resp.status_code == 200
        assert resp.json()["connectionType"] == "postgres"

        listed = (await client.get("/admin/data-agents")).json()
        assert [a["description"] for a in listed] == ["销售数仓"]

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        resp = await client.get("/admin/data-agents/missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == "DATA_AGENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_discover_unsupported_type(self, client):
        agent = await _create_agent(client)
        resp = await client.post(f"/admin/data-agents/{agent['id']}/discover-tables")
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is False
        assert body["error"] == "Table discovery for 'oracle' is not supported yet"

    @pytest.mark.asyncio
    async def test_connection_failure_marks_error(self, client):
        agent = await _create_agent(client)
        resp = await client.post(f"/admin/data-agents/{agent['id']}/test-connection")
        assert resp.json()["success"] is False

        agent = (await client.get(f"/admin/data-agents/{agent['id']}")).json()
        assert agent["status"] == "ERROR"

    @pytest.mark.asyncio
    async def test_delete_clears_vault(self, client, vault_store):
        agent = await _create_agent(client, credentials={"password": "a"})
        await _create_environment(client, agent["id"], credentials={"password": "b"})
        assert len(vault_store) == 2

        resp = await client.delete(f"/admin/data-agents/{agent['id']}")
        assert resp.status_code == 204
        assert vault_store == {}
        assert (await client.get(f"/admin/data-agents/{agent['id']}")).status_code == 404


class TestDataAgentEnvironments:
    """连接配置与凭据"""

    @pytest.mark.asyncio
    async def test_first_environment_activates_agent(self, client):
        agent = await _create_agent(client)
        env = await _create_environment(client, agent["id"])
        assert env["dataAgentId"] == agent["id"]
        assert env["status"] == "ACTIVE"

        agent = (await client.get(f"/admin/data-agents/{agent['id']}")).json()
        assert agent["status"] == "ACTIVE"
        assert [e["name"] for e in agent["environments"]] == ["production"]

    @pytest.mark.asyncio
    async def test_duplicate_name(self, client):
        agent = await _create_agent(client)
        await _create_environment(client, agent["id"])

        resp = await client.post(
            f"/admin/data-agents/{agent['id']}/environments", json={"name": "production"}
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "DATA_AGENT_ENVIRONMENT_EXISTS"

    @pytest.mark.asyncio
    async def test_credentials_info_hides_values(self, client):
        agent = await _create_agent(client)
        env = await _create_environment(
            client,
            agent["id"],
            connectionConfig={"host": "replica"},
            credentials={"username": "etl", "password": "s3cret"},
        )
        assert env["vaultKey"].startswith(f"data_agent_{agent['id']}_env_")

        resp = await client.get(
            f"/admin/data-agents/{agent['id']}/environments/{env['id']}/credentials"
        )
        info = resp.json()
        assert info["hasCredentials"] is True
        assert info["username"] == "etl"
        assert info["fields"] == ["password", "username"]
        assert "s3cret" not in resp.text

    @pytest.mark.asyncio
    async def test_put_credentials_merges(self, client, vault_store):
        agent = await _create_agent(client)
        env = await _create_environment(client, agent["id"], credentials={"username": "etl"})

        resp = await client.put(
            f"/admin/data-agents/{agent['id']}/environments/{env['id']}/credentials",
            json={"credentials": {"password": "new"}},
        )
        assert resp.status_code == 200
        assert resp.json()["fields"] == ["password", "username"]
        assert '"new"' in vault_store[env["vaultKey"]]

    @pytest.mark.asyncio
    async def test_put_credentials_without_vault(self, client_without_vault):
        agent = await _create_agent(client_without_vault)
        env = await _create_environment(client_without_vault, agent["id"])

        resp = await client_without_vault.put(
            f"/admin/data-agents/{agent['id']}/environments/{env['id']}/credentials",
            json={"credentials": {"password": "x"}},
        )
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_environment_of_other_agent(self, client):
        first = await _create_agent(client, name="a")
        second = await _create_agent(client, name="b")
        env = await _create_environment(client, second["id"])

        resp = await client.get(f"/admin/data-agents/{first['id']}/environments/{env['id']}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "DATA_AGENT_ENVIRONMENT_NOT_FOUND"


class TestImportAndRelationships:
    """表导入到关系推断的完整流程"""

    @pytest.mark.asyncio
    async def test_import_analyze_and_verify(self, client):
        agent = await _create_agent(client)
        env = await _create_environment(client, agent["id"])
        base = f"/admin/data-agents/{agent['id']}/environments/{env['id']}"

        resp = await client.post(f"{base}/tables/import", json={"tables": [
            _table(
                "customers",
                {"columnName": "id", "dataType": "integer", "isPrimaryKey": True},
                {"columnName": "email", "dataType": "varchar"},
            ),
        ]})
        assert resp.status_code == 200
        assert resp.json()["created"] == 1

        resp = await client.post(f"{base}/relationships/analyze")
        assert resp.status_code == 400
        assert resp.json()["code"] == "NOT_ENOUGH_TABLES"

        await client.post(f"{base}/tables/import", json={"tables": [
            _table(
                "orders",
                {"columnName": "id", "dataType": "integer", "isPrimaryKey": True},
                {"columnName": "customer_id", "dataType": "integer"},
            ),
        ]})

        tables = (await client.get(f"{base}/tables")).json()
        assert sorted(t["tableName"] for t in tables) == ["customers", "orders"]

        resp = await client.post(f"{base}/relationships/analyze", params={"analyzer": "heuristic"})
        body = resp.json()
        assert body["success"] is True
        assert body["analyzer"] == "heuristic"
        assert body["tableCount"] == 2
        assert body["created"] == 1

        relation = body["relationships"][0]
        assert relation["sourceColumn"] == "customer_id"
        assert relation["targetColumn"] == "id"
        assert relation["isVerified"] is False

        resp = await client.patch(
            f"/admin/data-agents/relationships/{relation['id']}",
            json={"description": "订单所属客户"},
        )
        assert resp.json()["isVerified"] is True

        listed = (await client.get(f"{base}/relationships")).json()
        assert listed[0]["description"] == "订单所属客户"

    @pytest.mark.asyncio
    async def test_unknown_analyzer(self, client):
        agent = await _create_agent(client)
        env = await _create_environment(client, agent["id"])
        resp = await client.post(
            f"/admin/data-agents/{agent['id']}/environments/{env['id']}/relationships/analyze",
            params={"analyzer": "magic"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "UNKNOWN_ANALYZER"

    @pytest.mark.asyncio
    async def test_table_and_column_edit_then_delete(self, client):
        agent = await _create_agent(client)
        env = await _create_environment(client, agent["id"])
        base = f"/admin/data-agents/{agent['id']}/environments/{env['id']}"

        imported = (await client.post(f"{base}/tables/import", json={"tables": [
            _table("customers", {"columnName": "id", "isPrimaryKey": True}),
        ]})).json()
        table = imported["tables"][0]

        resp = await client.patch(
            f"/admin/data-agents/tables/{table['id']}", json={"description": "客户主表"}
        )
        assert resp.json()["description"] == "客户主表"

        column = table["columns"][0]
        resp = await client.patch(
            f"/admin/data-agents/columns/{column['id']}", json={"comment": "主键"}
        )
        assert resp.json()["comment"] == "主键"

        resp = await client.delete(f"/admin/data-agents/tables/{table['id']}")
        assert resp.status_code == 204
        assert (await client.get(f"/admin/data-agents/tables/{table['id']}")).status_code == 404
        assert (await client.get(f"{base}/tables")).json() == []
