#!/usr/bin/env python3
"""
Create the admin, DSA and applicant test accounts if they are missing.

Credentials come from the SEED_* settings. Does nothing when
SEED_TEST_ACCOUNTS is false.

Usage:
    python scripts/seed_accounts.py
"""

from __future__ import annotations

import asyncio
import logging

from app.core.logging import configure_logging
from app.db.init_db import init_db
from app.db.session import engine

logger = logging.getLogger("scripts.seed_accounts")


async def main() -> int:
    created = await init_db()
    await engine.dispose()
    return created


if __name__ == "__main__":
    configure_logging()
    created = asyncio.run(main())
    logger.info("Seeded %s account(s)", created)
