class PortalError(Exception):
    """业务错误基类"""


class NotFoundError(PortalError):
    """资源不存在"""

    def __init__(self, code: str, detail: str):
        super().__init__(detail)
        self.code = code
        self.detail = detail


class ConflictError(PortalError):
    """资源冲突（重复名称等）"""

    def __init__(self, code: str, detail: str):
        super().__init__(detail)
        self.code = code
        self.detail = detail


class VaultUnavailableError(PortalError):
    """未配置 Vault 提供者"""


class VaultError(PortalError):
    """Vault 读写错误"""


class DriverError(PortalError):
    """外部数据库驱动错误"""


class RelationshipAnalysisError(PortalError):
    """关系推断错误"""


class LLMError(PortalError):
    """LLM 调用错误"""


class BadRequestError(PortalError):
    """请求无法处理（前置条件不满足）"""

    def __init__(self, code: str, detail: str):
        super().__init__(detail)
        self.code = code
        self.detail = detail


class CredentialsRetrievalError(PortalError):
    """无法从 Vault 读取连接凭据"""
