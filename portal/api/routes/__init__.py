"""
API 路由汇总

将所有子路由注册到主路由器，统一对外暴露。

路由模块说明：
- health.py        : 存活与就绪探测接口
- admin_tokens.py  : 管理员 Token 管理
- applications.py  : 应用管理、应用认证配置、应用下的部署环境
- environments.py  : 部署环境详情和安全配置
- api_keys.py      : 应用 API Key 管理
- endpoints.py     : 接口定义管理
- data_agents.py   : 数据代理、连接配置、表发现与导入、关系推断
- tables.py        : 已导入的表和字段
- relationships.py : 表关联关系编辑
"""

from fastapi import APIRouter

from portal.api.routes import (
    admin_tokens,
    api_keys,
    applications,
    data_agents,
    endpoints,
    environments,
    health,
    relationships,
    tables,
)

# 主路由器，包含所有 API 端点
api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(admin_tokens.router)
api_router.include_router(applications.router)
api_router.include_router(api_keys.router)
api_router.include_router(endpoints.router)
api_router.include_router(environments.router)
# tables / relationships 需要先于 data_agents 注册，避免被 /{agent_id} 路由匹配
api_router.include_router(tables.router)
api_router.include_router(relationships.router)
api_router.include_router(data_agents.router)
