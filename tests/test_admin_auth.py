"""
管理员认证测试

任何认证失败都返回 401 {"code": "UNAUTHORIZED", "detail": "Unauthorized"}。
"""

from datetime import datetime, timedelta, timezone

import pytest

from portal.auth.admin_token import generate_admin_token, hash_admin_token
from portal.models import AdminToken, User
from portal.models.user import ROLE_ADMIN, ROLE_USER

UNAUTHORIZED = {"code": "UNAUTHORIZED", "detail": "Unauthorized"}


async def _issue_token(db, user: User | None = None, **kwargs) -> str:
    raw, hashed, prefix = generate_admin_token()
    db.add(AdminToken(
        user_id=user.id if user else None,
        name="test",
        prefix=prefix,
        hashed_token=hashed,
        **kwargs,
    ))
    await db.commit()
    return raw


async def _user(db, role: str, is_active: bool = True) -> User:
    user = User(email=f"{role.lower()}-{is_active}@example.com", role=role, is_active=is_active)
    db.add(user)
    await db.commit()
    return user


class TestAdminAuthentication:
    """认证失败场景"""

    @pytest.mark.asyncio
    async def test_missing_token(self, anonymous_client):
        resp = await anonymous_client.get("/admin/applications")
        assert resp.status_code == 401
        assert resp.json() == UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_invalid_token(self, anonymous_client):
        resp = await anonymous_client.get(
            "/admin/applications", headers={"X-Admin-Token": "wrong"}
        )
        assert resp.status_code == 401
        assert resp.json() == UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_revoked_token(self, anonymous_client, db):
        raw = await _issue_token(db, revoked=True)
        resp = await anonymous_client.get("/admin/applications", headers={"X-Admin-Token": raw})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, anonymous_client, db):
        raw = await _issue_token(db, expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
        resp = await anonymous_client.get("/admin/applications", headers={"X-Admin-Token": raw})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_non_admin_user(self, anonymous_client, db):
        raw = await _issue_token(db, await _user(db, ROLE_USER))
        resp = await anonymous_client.get("/admin/applications", headers={"X-Admin-Token": raw})
        assert resp.status_code == 401
        assert resp.json() == UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_inactive_admin(self, anonymous_client, db):
        raw = await _issue_token(db, await _user(db, ROLE_ADMIN, is_active=False))
        resp = await anonymous_client.get("/admin/applications", headers={"X-Admin-Token": raw})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_health_is_public(self, anonymous_client):
        resp = await anonymous_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_readiness_is_public(self, anonymous_client):
        resp = await anonymous_client.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"] == {"database": "ok", "vault": "ok"}

    @pytest.mark.asyncio
    async def test_readiness_without_vault(self, client_without_vault):
        resp = await client_without_vault.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"]["vault"] == "disabled"


class TestAdminAuthenticationSuccess:
    """认证成功场景"""

    @pytest.mark.asyncio
    async def test_environment_token(self, client):
        resp = await client.get("/admin/applications")
        assert resp.status_code == 200
        assert resp.json() == {"items": [], "total": 0}

    @pytest.mark.asyncio
    async def test_bearer_header(self, anonymous_client):
        resp = await anonymous_client.get(
            "/admin/applications", headers={"Authorization": "Bearer test-admin-token"}
        )
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_admin_user_token_updates_last_used(self, anonymous_client, db):
        raw = await _issue_token(db, await _user(db, ROLE_ADMIN))
        resp = await anonymous_client.get("/admin/tokens", headers={"X-Admin-Token": raw})
        assert resp.status_code == 200
        items = resp.json()["items"]
        assert len(items) == 1
        assert items[0]["lastUsedAt"] is not None


class TestAdminTokenApi:
    """管理员 Token 管理接口"""

    @pytest.mark.asyncio
    async def test_create_use_and_revoke(self, client, anonymous_client):
        resp = await client.post("/admin/tokens", json={"name": "ops"})
        assert resp.status_code == 201
        body = resp.json()
        token = body["token"]
        assert token.startswith("admin_")
        assert body["prefix"] == token[:12]

        resp = await anonymous_client.get("/admin/applications", headers={"X-Admin-Token": token})
        assert resp.status_code == 200

        resp = await client.post(f"/admin/tokens/{body['id']}/revoke")
        assert resp.status_code == 200
        assert resp.json()["revoked"] is True

        resp = await anonymous_client.get("/admin/applications", headers={"X-Admin-Token": token})
        assert resp.status_code == 401

        resp = await client.get("/admin/tokens")
        assert resp.json()["total"] == 0
        resp = await client.get("/admin/tokens", params={"showRevoked": "true"})
        assert resp.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_delete_and_not_found(self, client):
        resp = await client.post("/admin/tokens", json={"name": "temp"})
        token_id = resp.json()["id"]

        resp = await client.delete(f"/admin/tokens/{token_id}")
        assert resp.status_code == 204

        resp = await client.get(f"/admin/tokens/{token_id}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "ADMIN_TOKEN_NOT_FOUND"

    def test_token_hash_is_stable(self):
        raw, hashed, prefix = generate_admin_token(prefix="adm_")
        assert raw.startswith("adm_")
        assert hash_admin_token(raw) == hashed
        assert prefix == raw[:12]

    def test_naive_expiry_treated_as_utc(self):
        now = datetime.now(timezone.utc)
        token = AdminToken(name="t", prefix="p", hashed_token="h", revoked=False)
        token.expires_at = (now + timedelta(minutes=5)).replace(tzinfo=None)
        assert token.is_usable(now) is True
        token.expires_at = (now - timedelta(minutes=5)).replace(tzinfo=None)
        assert token.is_usable(now) is False
