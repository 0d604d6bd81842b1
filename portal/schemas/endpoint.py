"""
接口定义 Schemas

path_params / query_params / request_body / response_body 在入口处统一解析：
- 对象或数组：原样保存
- JSON 字符串：解析为对象后保存
- 非法 JSON 字符串：校验失败（422）
"""

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from portal.schemas.common import CamelModel

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

JSON_FIELDS = ("path_params", "query_params", "request_body", "response_body")


def parse_json_field(value: Any) -> Any:
    """JSON 字符串解析为结构化数据"""
    if value is None or not isinstance(value, str):
        return value
    if not value.strip():
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e.msg}") from e


class EndpointBase(CamelModel):
    path_params: dict | list | None = None
    query_params: dict | list | None = None
    request_body: dict | list | None = None
    response_body: dict | list | None = None

    @field_validator(*JSON_FIELDS, mode="before")
    @classmethod
    def _parse_json(cls, value: Any) -> Any:
        return parse_json_field(value)


class EndpointCreate(EndpointBase):
    """创建接口定义请求"""
    name: str = Field(..., min_length=1, max_length=255)
    method: HttpMethod = "GET"
    path: str = Field(..., min_length=1, description="接口路径，如 /v1/orders/{id}")
    description: str | None = None


class EndpointUpdate(EndpointBase):
    """更新接口定义请求"""
    name: str | None = Field(None, min_length=1, max_length=255)
    method: HttpMethod | None = None
    path: str | None = Field(None, min_length=1)
    description: str | None = None


class EndpointResponse(CamelModel):
    """接口定义响应"""
    id: str
    application_id: str
    name: str
    method: str
    path: str
    description: str | None
    path_params: dict | list | None
    query_params: dict | list | None
    request_body: dict | list | None
    response_body: dict | list | None
    created_at: datetime
    updated_at: datetime
