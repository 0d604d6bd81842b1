"""
应用 Schemas

包含应用 CRUD 模型，以及按认证方式区分的认证配置（tagged union）。

认证配置示例：
    {"authenticationMethod": "bearer_token", "bearerToken": "xxx"}
    {"authenticationMethod": "basic_auth", "username": "svc", "basicAuthPassword": "***"}
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from portal.schemas.api_key import ApiKeyInfo
from portal.schemas.common import CamelModel
from portal.schemas.endpoint import EndpointResponse
from portal.schemas.environment import EnvironmentResponse

ApplicationStatus = Literal["ACTIVE", "INACTIVE", "MAINTENANCE"]

AuthenticationMethod = Literal[
    "none",
    "api_key",
    "bearer_token",
    "basic_auth",
    "oauth2",
    "jwt",
    "azure_apim",
    "azure_ad",
    "aws_iam",
    "gcp_service_account",
    "signature_auth",
    "custom",
]


# ==================== 应用 CRUD ====================

class ApplicationCreate(CamelModel):
    """创建应用请求"""
    name: str = Field(..., min_length=1, max_length=255, description="应用名称")
    description: str | None = Field(None, description="应用描述")
    status: ApplicationStatus = Field("ACTIVE", description="应用状态")
    authentication_method: AuthenticationMethod = Field("none", description="调用上游时的认证方式")
    health_check_url: str | None = Field(None, description="健康检查地址")
    health_check_interval: int | None = Field(None, ge=10, description="健康检查间隔（秒）")


class ApplicationUpdate(CamelModel):
    """更新应用请求，只更新传入的字段"""
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    status: ApplicationStatus | None = None
    authentication_method: AuthenticationMethod | None = None
    health_check_url: str | None = None
    health_check_interval: int | None = Field(None, ge=10)


class ApplicationResponse(CamelModel):
    """应用响应"""
    id: str
    name: str
    description: str | None
    status: str
    authentication_method: str
    health_check_url: str | None
    health_check_interval: int | None
    health_status: str
    last_health_check: datetime | None
    created_at: datetime
    updated_at: datetime


class ApplicationListItem(ApplicationResponse):
    """应用列表项（附带子资源数量）"""
    environment_count: int = 0
    api_key_count: int = 0
    endpoint_count: int = 0


class ApplicationListResponse(CamelModel):
    items: list[ApplicationListItem]
    total: int


class ApplicationDetailResponse(ApplicationResponse):
    """应用详情（附带环境、API Key 和接口定义）"""
    environments: list[EnvironmentResponse] = Field(default_factory=list)
    api_keys: list[ApiKeyInfo] = Field(default_factory=list)
    endpoints: list[EndpointResponse] = Field(default_factory=list)


# ==================== 认证配置（按认证方式区分） ====================

class NoAuthSettings(CamelModel):
    authentication_method: Literal["none"]


class ApiKeyAuthSettings(CamelModel):
    authentication_method: Literal["api_key"]
    api_key: str = Field(..., min_length=1)
    header_name: str = "X-API-Key"
    location: Literal["header", "query"] = "header"


class BearerTokenAuthSettings(CamelModel):
    authentication_method: Literal["bearer_token"]
    bearer_token: str = Field(..., min_length=1)


class BasicAuthSettings(CamelModel):
    authentication_method: Literal["basic_auth"]
    username: str = Field(..., min_length=1)
    basic_auth_password: str = Field(..., min_length=1)


class OAuth2AuthSettings(CamelModel):
    authentication_method: Literal["oauth2"]
    token_url: str
    client_id: str
    oauth2_client_secret: str = Field(..., min_length=1)
    scope: str | None = None


class JwtAuthSettings(CamelModel):
    authentication_method: Literal["jwt"]
    jwt_secret: str = Field(..., min_length=1)
    algorithm: str = "HS256"
    issuer: str | None = None
    audience: str | None = None


class AzureApimAuthSettings(CamelModel):
    authentication_method: Literal["azure_apim"]
    apim_url: str | None = None
    azure_apim_subscription_key: str = Field(..., min_length=1)


class AzureAdAuthSettings(CamelModel):
    authentication_method: Literal["azure_ad"]
    tenant_id: str
    client_id: str
    client_secret: str = Field(..., min_length=1)
    scope: str | None = None


class AwsIamAuthSettings(CamelModel):
    authentication_method: Literal["aws_iam"]
    aws_access_key_id: str
    aws_secret_key: str = Field(..., min_length=1)
    aws_session_token: str | None = None
    region: str = "us-east-1"


class GcpServiceAccountAuthSettings(CamelModel):
    authentication_method: Literal["gcp_service_account"]
    gcp_key_file: str = Field(..., min_length=1, description="服务账号 JSON 密钥内容")
    project_id: str | None = None


class SignatureAuthSettings(CamelModel):
    authentication_method: Literal["signature_auth"]
    signature_private_key: str = Field(..., min_length=1)
    signature_algorithm: str = "RSA-SHA256"
    signature_header: str = "X-Signature"
    signature_format: str | None = None
    key_version: str | None = None
    unique_identifier: str | None = None


class CustomAuthSettings(CamelModel):
    authentication_method: Literal["custom"]
    custom_headers: dict[str, str] = Field(default_factory=dict)


AuthSettings = Annotated[
    Union[
        NoAuthSettings,
        ApiKeyAuthSettings,
        BearerTokenAuthSettings,
        BasicAuthSettings,
        OAuth2AuthSettings,
        JwtAuthSettings,
        AzureApimAuthSettings,
        AzureAdAuthSettings,
        AwsIamAuthSettings,
        GcpServiceAccountAuthSettings,
        SignatureAuthSettings,
        CustomAuthSettings,
    ],
    Field(discriminator="authentication_method"),
]

auth_settings_adapter = TypeAdapter(AuthSettings)


class ApplicationSecurityResponse(CamelModel):
    """应用认证配置响应"""
    authentication_method: str
    credentials: dict
