"""
SQLAlchemy ORM 基类定义

所有数据库模型都必须继承自这个 Base 类。
Alembic 通过 Base.metadata 收集表结构生成迁移脚本，
测试中通过 Base.metadata.create_all() 建表。
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """声明式基类"""
    pass
