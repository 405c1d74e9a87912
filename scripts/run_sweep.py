"""
Scheduler sweep runner.

Runs one tick of the background scheduler: due HourGlass deductions, then
date-based Money Room unlocks. Point cron (or any external scheduler) at it;
re-running for the same instant is harmless.

Usage:
    python scripts/run_sweep.py
    python scripts/run_sweep.py --loop 60
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from splitspace.app.core.clock import utcnow
from splitspace.app.core.observability import configure_logging
from splitspace.app.core.redis_client import close_redis
from splitspace.app.db.session import AsyncSessionLocal, engine
from splitspace.app.domain.hourglass.plan_service import RecurringPlanService
from splitspace.app.domain.rooms.room_service import RoomService

logger = logging.getLogger("splitspace.sweep")


async def run_once():
    now = utcnow()
    async with AsyncSessionLocal() as db:
        results = await RecurringPlanService.process_due(db, now)
        unlocked = await RoomService.process_due_rooms(db, now)

    outcomes = {}
    for result in results:
        outcomes[result.outcome] = outcomes.get(result.outcome, 0) + 1
    logger.info("Sweep at %s: plans %s, rooms unlocked %s", now.isoformat(), outcomes, unlocked)
    return results, unlocked


async def main(loop_seconds: int):
    configure_logging()
    try:
        while True:
            await run_once()
            if not loop_seconds:
                break
            await asyncio.sleep(loop_seconds)
    finally:
        await close_redis()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the SplitSpace scheduler sweep")
    parser.add_argument("--loop", type=int, default=0, help="Repeat every N seconds (0 = run once)")
    args = parser.parse_args()
    asyncio.run(main(args.loop))
