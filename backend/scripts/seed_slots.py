"""
LateSeat - Slot Seed Script
===========================
Seeds the table pool and the slot catalogue of the upcoming operating days
and prunes table claims that already ended.

Safe to run repeatedly: existing slots and tables are left untouched.
"""

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.database import close_db_connection, ensure_indexes  # noqa: E402
from core.timeutils import now_utc, venue_tz, day_label  # noqa: E402
from reservation_slots_module import ensure_slots, ensure_table_pool, is_operating_day  # noqa: E402
from reservation_booking import prune_expired_claims  # noqa: E402

DEFAULT_DAYS_AHEAD = 28


async def seed_upcoming_slots(days_ahead: int = DEFAULT_DAYS_AHEAD, start: Optional[date] = None) -> dict:
    """Seed slots for every operating day in [start, start + days_ahead)"""
    start = start or now_utc().astimezone(venue_tz()).date()
    seeded = {}
    for offset in range(days_ahead):
        day = start + timedelta(days=offset)
        if not is_operating_day(day):
            continue
        date_str = day.strftime("%Y-%m-%d")
        seeded[date_str] = [slot["time"] for slot in await ensure_slots(date_str)]
    return seeded


async def main():
    print("=" * 70)
    print("LATESEAT SLOT SEED")
    print("=" * 70)

    await ensure_indexes()
    tables = await ensure_table_pool()
    print(f"\nTable pool: {tables} tables")
    pruned = await prune_expired_claims()
    print(f"Expired claims pruned on {pruned} tables")

    seeded = await seed_upcoming_slots()
    print("\nService nights:")
    for date_str, times in seeded.items():
        label = day_label(date.fromisoformat(date_str))
        print(f"   • {date_str} ({label}): {', '.join(times)}")

    await close_db_connection()
    print("\nSlot seed finished!")


if __name__ == "__main__":
    asyncio.run(main())
