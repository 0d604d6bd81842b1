"""
用户模型 (User)

管理后台的操作者。只有 role 为 ADMIN 且处于启用状态的用户才能访问 /admin 接口。
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"


class User(TimestampMixin, Base):
    """
    用户表

    字段说明：
    - email: 登录邮箱，全局唯一
    - role: ADMIN / USER
    - is_active: 账号是否启用
    """
    __tablename__ = "users"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    name: Mapped[str | None] = mapped_column(String(255))

    role: Mapped[str] = mapped_column(String(20), default=ROLE_USER, nullable=False)

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
