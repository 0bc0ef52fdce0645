"""
Script to create the first CivicTrack administrator.

Usage:
    python scripts/create_admin_user.py

Environment Variables Required:
    DATABASE_URL - PostgreSQL connection string
    REDIS_URL - Redis connection string
    SECRET_KEY - Application secret key
"""

import asyncio
import sys
from getpass import getpass

from sqlalchemy import select

from civictrack.core.database import AsyncSessionLocal
from civictrack.core.security import hash_password
from civictrack.models.user import User, UserRole


def prompt_password() -> str:
    while True:
        password = getpass("Enter admin password: ")
        if len(password) < 8:
            print("Error: Password must be at least 8 characters")
            continue
        if password != getpass("Confirm admin password: "):
            print("Error: Passwords do not match. Please try again.")
            continue
        return password


async def create_admin_user(name: str, email: str, password: str) -> User:
    """Insert an ADMIN account; refuses to overwrite an existing email."""
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none() is not None:
            raise ValueError(f"User '{email}' already exists")

        admin = User(
            name=name,
            email=email,
            hashed_password=hash_password(password),
            role=UserRole.ADMIN,
            wallet_balance=0,
            is_active=True,
        )
        db.add(admin)
        await db.commit()
        await db.refresh(admin)
        return admin


def main() -> None:
    print("CivicTrack admin user creation")
    print()

    name = input("Enter admin name [default: Administrator]: ").strip() or "Administrator"
    email = input("Enter admin email: ").strip().lower()
    if not email:
        print("Error: Email is required")
        sys.exit(1)
    password = prompt_password()

    try:
        admin = asyncio.run(create_admin_user(name, email, password))
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print()
    print("Admin user created.")
    print(f"Email: {admin.email}")
    print(f"ID: {admin.id}")
    print("You can now login at: POST /api/v1/auth/login")


if __name__ == "__main__":
    main()
