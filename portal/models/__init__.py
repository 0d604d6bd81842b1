"""
数据模型层 (ORM Models)

数据模型关系图：
    User (用户) ── AdminToken (管理员 Token)

    Application (应用)
       │
       ├── Environment (部署环境) ── EnvironmentSecurity (安全配置)
       │
       ├── ApiKey (API 密钥)
       │
       └── Endpoint (接口定义)

    DataAgent (数据代理)
       │
       └── DataAgentEnvironment (连接配置)
              │
              ├── DataAgentTable ── DataAgentTableColumn
              │
              └── DataAgentRelation
"""

from portal.models.admin_token import AdminToken
from portal.models.api_key import ApiKey
from portal.models.application import Application
from portal.models.data_agent import (
    DataAgent,
    DataAgentEnvironment,
    DataAgentRelation,
    DataAgentTable,
    DataAgentTableColumn,
)
from portal.models.endpoint import Endpoint
from portal.models.environment import Environment, EnvironmentSecurity
from portal.models.user import User

__all__ = [
    "AdminToken",
    "ApiKey",
    "Application",
    "DataAgent",
    "DataAgentEnvironment",
    "DataAgentRelation",
    "DataAgentTable",
    "DataAgentTableColumn",
    "Endpoint",
    "Environment",
    "EnvironmentSecurity",
    "User",
]
