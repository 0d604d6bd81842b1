"""
模型公共字段

    class Endpoint(TimestampMixin, Base):
        id: Mapped[UUID_PK] = mapped_column(default=new_id)
"""

from datetime import datetime
from typing import Annotated
from uuid import uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

# 36 位字符串形式的 UUID 主键，SQLite 与 PostgreSQL 通用
UUID_PK = Annotated[str, mapped_column(String(36), primary_key=True)]


def new_id() -> str:
    return str(uuid4())


class TimestampMixin:
    """created_at / updated_at，均由数据库填写"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
