"""
Create an organization and its first admin for local development.

    taskdeck-create-admin --email ada@example.com --password secret --org "Acme"
"""

import argparse
import asyncio
from typing import Optional

from sqlalchemy import func
from sqlmodel import select

from taskdeck.core.auth import hash_password
from taskdeck.core.database import get_session_context, init_db
from taskdeck.models.organization import Organization
from taskdeck.models.user import User


async def create_admin(
    session,
    email: str,
    password: str,
    organization: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    """Ensure the organization and an admin user exist. Idempotent."""
    email = email.strip().lower()

    result = await session.execute(select(Organization).where(Organization.name == organization))
    org = result.scalar_one_or_none()
    if not org:
        org = Organization(name=organization)
        session.add(org)
        await session.flush()
        print(f"Created organization: {organization}")

    result = await session.execute(select(User).where(func.lower(User.email) == email))
    user = result.scalar_one_or_none()
    if not user:
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            organization_id=org.id,
        )
        session.add(user)
        print(f"Created user: {email}")
    else:
        print(f"User {email} already exists, promoting to admin.")

    user.role = "admin"
    user.organization_id = org.id
    user.password_hash = hash_password(password)
    await session.flush()
    return user


async def _main(args: argparse.Namespace) -> None:
    await init_db()
    async with get_session_context() as session:
        await create_admin(
            session,
            args.email,
            args.password,
            args.org,
            first_name=args.first_name,
            last_name=args.last_name,
        )
    print("Done.")


def run() -> None:
    parser = argparse.ArgumentParser(description="Create a local admin user.")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--password", required=True, help="Password for the user")
    parser.add_argument("--org", default="Default Organization", help="Organization name")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    asyncio.run(_main(parser.parse_args()))


if __name__ == "__main__":
    run()
