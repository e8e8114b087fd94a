"""
Create an admin account.

Usage:
    python -m medverify.jobs.create_admin --username admin --name "Clinic Admin"

The password is read from --password or prompted for.
"""
import argparse
import asyncio
import getpass
import sys

from medverify.core.logger import logger
from medverify.db.session import async_session, engine, init_db
from medverify.services.identity_service import IdentityService


async def create_admin(username: str, password: str, name: str | None = None, email: str | None = None) -> bool:
    await init_db()
    try:
        async with async_session() as session:
            identities = IdentityService(session)
            if await identities.find_admin(username):
                logger.error(f"Admin {username} already exists")
                return False
            admin = await identities.create_admin(username, password, name=name, email=email)
            logger.info(f"Admin {admin.username} created with id {admin.id}")
            return True
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create an admin account")
    parser.add_argument("--username", required=True)
    parser.add_argument("--password")
    parser.add_argument("--name")
    parser.add_argument("--email")
    args = parser.parse_args(argv)

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("Password must be at least 8 characters", file=sys.stderr)
        return 1
    created = asyncio.run(create_admin(args.username, password, args.name, args.email))
    return 0 if created else 1


if __name__ == "__main__":
    sys.exit(main())
