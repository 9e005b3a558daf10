"""Maintenance process entrypoint: purges old activity log entries."""

import argparse
import asyncio
from typing import Optional

from config import settings
from database import async_session_maker, engine
from services.activity import cleanup_activity_service


async def purge_once(days_old: Optional[int] = None) -> int:
    async with async_session_maker() as db:
        result = await cleanup_activity_service(actor_id=None, db=db, days_old=days_old)
    print(f"🧹 Activity cleanup: deleted={result['deleted_count']} older_than={result['days_old']}d")
    return int(result["deleted_count"])


async def run(days_old: Optional[int], interval_minutes: int) -> None:
    try:
        if interval_minutes <= 0:
            await purge_once(days_old)
            return
        while True:
            try:
                await purge_once(days_old)
            except Exception as exc:
                print(f"⚠️ Activity cleanup tick failed: {exc}")
            await asyncio.sleep(interval_minutes * 60)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Purge activity log entries past the retention window.")
    parser.add_argument("--days", type=int, default=settings.ACTIVITY_RETENTION_DAYS)
    parser.add_argument(
        "--interval-minutes",
        type=int,
        default=0,
        help="Repeat every N minutes; 0 runs a single purge and exits.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.days, args.interval_minutes))


if __name__ == "__main__":
    main()
