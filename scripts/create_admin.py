"""
创建管理员用户和管理员 Token

用途：
    - 初始化部署后创建第一个管理员
    - 为已有管理员追加新的 Token

用法示例：
    uv run python scripts/create_admin.py --email admin@example.com
    uv run python scripts/create_admin.py --email admin@example.com --token-name ci
"""

import argparse
import asyncio

from sqlalchemy import select

from portal.db.session import SessionLocal
from portal.models import User
from portal.models.user import ROLE_ADMIN
from portal.services.admin_tokens import issue_admin_token


async def main() -> None:
    parser = argparse.ArgumentParser(description="Create an admin user and admin token")
    parser.add_argument("--email", required=True, help="Admin email")
    parser.add_argument("--name", help="Display name")
    parser.add_argument("--token-name", default="default", help="Token name")
    args = parser.parse_args()

    async with SessionLocal() as session:
        result = await session.execute(select(User).where(User.email == args.email))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(email=args.email, name=args.name, role=ROLE_ADMIN, is_active=True)
            session.add(user)
            await session.flush()
            print(f"Created admin user {user.email} ({user.id})")
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN
            print(f"Promoted {user.email} to ADMIN")

        _, display_token = await issue_admin_token(session, name=args.token_name, user_id=user.id)

    print("Admin token (shown only once):")
    print(display_token)


if __name__ == "__main__":
    asyncio.run(main())
