"""
公共 Schema 基类

API 的 JSON 字段统一使用 camelCase（如 rateLimitEnabled、isVerified），
Python 侧使用 snake_case，输入时两种写法都接受。
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """camelCase 别名基类，支持从 ORM 对象构造"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
