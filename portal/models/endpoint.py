"""
接口定义模型 (Endpoint)

应用对外暴露的接口描述。path_params / query_params / request_body /
response_body 始终以结构化 JSON 保存，字符串输入在写入前解析一次。
"""

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id


class Endpoint(TimestampMixin, Base):
    """接口定义表"""
    __tablename__ = "endpoints"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    application_id: Mapped[str] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    method: Mapped[str] = mapped_column(String(10), default="GET", nullable=False)

    path: Mapped[str] = mapped_column(String(1024), nullable=False)

    description: Mapped[str | None] = mapped_column(Text)

    path_params: Mapped[dict | list | None] = mapped_column(JSON)
    query_params: Mapped[dict | list | None] = mapped_column(JSON)
    request_body: Mapped[dict | list | None] = mapped_column(JSON)
    response_body: Mapped[dict | list | None] = mapped_column(JSON)
