#!/usr/bin/env python3
"""
Mark overdue DSA review assignments as missed.

Each missed assignment increments the DSA's missed-deadline counter and
recomputes their deadline compliance. Intended for a cron job or scheduler;
the review endpoints also sweep lazily for the calling DSA.

Usage:
    python scripts/sweep_deadlines.py
"""

from __future__ import annotations

import asyncio
import logging

from app.core.logging import configure_logging
from app.db.session import AsyncSessionLocal, engine
from app.services.dsa_workflow import sweep_missed_deadlines

logger = logging.getLogger("scripts.sweep_deadlines")


async def main() -> int:
    async with AsyncSessionLocal() as session:
        missed = await sweep_missed_deadlines(session)
    await engine.dispose()
    return missed


if __name__ == "__main__":
    configure_logging()
    count = asyncio.run(main())
    logger.info("Deadline sweep finished", extra={"missed": count})
