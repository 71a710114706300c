#!/usr/bin/env python3
"""
One-time script to bootstrap the first ADMIN identity. Run on the server.

There is no self-signup: every other identity is created through
POST /users by an admin or manager, so somebody has to exist first.

Usage:
    JWT_SECRET=... python -m demo.create_admin admin admin@example.com
    (the password is read from ADMIN_PASSWORD or prompted for)
"""
import asyncio
import getpass
import os
import sys

from sqlalchemy import select

from app.database import AsyncSessionLocal, Base, engine, ensure_sqlite_directory
from app.models.user import Role, User
from app.security import hash_password


async def create_admin(username: str, email: str, password: str) -> None:
    ensure_sqlite_directory(engine.url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        async with AsyncSessionLocal() as session:
            existing = await session.execute(
                select(User).where(User.username == username, User.deleted_at.is_(None))
            )
            if existing.scalar_one_or_none() is not None:
                print(f"User {username!r} already exists, nothing to do")
                return

            session.add(User(
                username=username,
                password_hash=hash_password(password),
                role=Role.ADMIN,
                first_name="System",
                last_name="Administrator",
                email=email,
            ))
            await session.commit()
            print(f"Created admin {username!r}")
    finally:
        await engine.dispose()


def main() -> None:
    if len(sys.argv) != 3:
        sys.exit(f"usage: {sys.argv[0]} USERNAME EMAIL")
    password = os.environ.get("ADMIN_PASSWORD") or getpass.getpass("Password: ")
    if len(password) < 8:
        sys.exit("Password must be at least 8 characters")
    asyncio.run(create_admin(sys.argv[1], sys.argv[2], password))


if __name__ == "__main__":
    main()
