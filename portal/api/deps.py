"""
API 依赖注入函数

这个模块定义了所有 API 路由共用的依赖项。
FastAPI 的依赖注入系统会自动调用这些函数，并将结果注入到路由处理函数中。

使用示例：
    @router.get("/example")
    async def example_endpoint(
        admin=Depends(get_admin_user),      # 认证通过的管理员
        db=Depends(get_db_session),         # 数据库会话
        vault=Depends(get_vault_client),    # 每个请求独立的 Vault 客户端
    ):
        pass
"""

from portal.auth.admin_token import AdminIdentity, get_admin_user
from portal.db.session import get_db
from portal.infra.vault import VaultClient, get_vault

# 重新导出，方便路由模块导入
get_db_session = get_db
get_vault_client = get_vault

__all__ = [
    "AdminIdentity",
    "VaultClient",
    "get_admin_user",
    "get_db_session",
    "get_vault_client",
]
