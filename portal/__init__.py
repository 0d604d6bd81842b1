"""
Portal Admin - 管理后台主包

管理应用（Application）、部署环境（Environment）、API Key、安全配置，
以及连接外部数据源的数据代理（Data Agent）子系统。包含以下子模块：
- api/        : API 路由和依赖注入
- auth/       : 管理员认证
- db/         : 数据库连接和会话管理
- models/     : SQLAlchemy ORM 数据模型
- schemas/    : Pydantic 请求/响应模式
- services/   : 业务逻辑服务层
- infra/      : 基础设施（日志、Vault、LLM、数据库驱动）
- middleware/ : 请求追踪中间件

项目架构遵循分层设计：
    API层 → 服务层 → 数据访问层 → 基础设施层
"""
