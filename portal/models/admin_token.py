"""
管理员 Token 模型 (AdminToken)

访问 /admin/* 接口的凭证。只保存哈希，user_id 为空的 Token 属于系统级，不做角色校验。
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id


class AdminToken(TimestampMixin, Base):
    __tablename__ = "admin_tokens"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)
    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # 明文前 12 位，列表中用来区分不同的 Token
    prefix: Mapped[str] = mapped_column(String(12), index=True)
    hashed_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def is_usable(self, now: datetime) -> bool:
        """未撤销且未过期"""
        if self.revoked:
            return False
        if self.expires_at is None:
            return True
        expires_at = self.expires_at
        # SQLite 读回的时间不带时区
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > now
