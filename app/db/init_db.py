import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.core.security import pwd_context
from app.core.settings import settings
from app.db.session import AsyncSessionLocal
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedAccount:
    email: str
    password: str
    first_name: str
    last_name: str
    phone: str
    role: str
    dsa_id: str | None = None
    bank_name: str | None = None


def seed_accounts() -> list[SeedAccount]:
    return [
        SeedAccount(
            email=settings.seed_admin_email,
            password=settings.seed_admin_password,
            first_name="System",
            last_name="Admin",
            phone="9000000001",
            role="admin",
        ),
        SeedAccount(
            email=settings.seed_dsa_email,
            password=settings.seed_dsa_password,
            first_name="Test",
            last_name="Agent",
            phone="9000000002",
            role="dsa",
            dsa_id="SBI000001TST",
            bank_name="SBI",
        ),
        SeedAccount(
            email=settings.seed_user_email,
            password=settings.seed_user_password,
            first_name="Test",
            last_name="Applicant",
            phone="9000000003",
            role="user",
        ),
    ]


async def init_db() -> int:
    """Create the admin, DSA and applicant test accounts that do not exist yet."""
    if not settings.seed_test_accounts:
        return 0
    created = 0
    async with AsyncSessionLocal() as session:
        for account in seed_accounts():
            stmt = select(User.id).where(func.lower(User.email) == account.email.lower())
            if (await session.execute(stmt)).scalar_one_or_none():
                continue
            # Seed passwords are fixed test credentials and bypass the length policy.
            session.add(
                User(
                    email=account.email.lower(),
                    hashed_password=pwd_context.hash(account.password),
                    first_name=account.first_name,
                    last_name=account.last_name,
                    phone=account.phone,
                    role=account.role,
                    is_active=True,
                    is_verified=True,
                    verified_at=datetime.now(timezone.utc) if account.role == "dsa" else None,
                    dsa_id=account.dsa_id,
                    bank_name=account.bank_name,
                    token_version=0,
                )
            )
            created += 1
            logger.info("Seeded %s account %s", account.role, account.email)
        if created:
            await session.commit()
    return created


if __name__ == "__main__":
    asyncio.run(init_db())
