"""
Database setup script for Supabase.
Run this after applying db/migrations/001_calendar_schema.sql to seed slots.
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import settings
from db import create_store
from services.slot_service import SlotService
from utils.datetime_utils import utc_now


async def create_sample_slots(days: int, resource_ids) -> int:
    """Create a full day of canonical slots for each tech over the next ``days`` days."""
    store = create_store(settings)
    slot_service = SlotService(store, settings.slot_time_list)

    start = utc_now().date() + timedelta(days=1)  # Start from tomorrow
    slots_created = 0

    for offset in range(days):
        day = start + timedelta(days=offset)
        for resource_id in resource_ids or [None]:
            try:
                created = await slot_service.create_day_slots(day, resource_id)
                slots_created += len(created)
                print(f"Created {len(created)} slot(s) on {day} for {resource_id or 'any tech'}")
            except Exception as e:
                print(f"Failed to create slots on {day}: {e}")

    print(f"\n✅ Created {slots_created} slots")
    return slots_created


async def main():
    """Main setup function."""
    parser = argparse.ArgumentParser(description="Seed calendar slots")
    parser.add_argument("--days", type=int, default=7)
    parser.add_argument("--resource", action="append", dest="resources", default=[])
    parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt")
    args = parser.parse_args()

    print("🚀 Setting up database...")
    print("\nNote: Make sure you've run db/migrations/001_calendar_schema.sql first!\n")

    try:
        settings.validate_all_required()
        print(f"✅ Using {settings.store_backend} store")

        if args.yes or input("\nCreate sample slots? (y/n): ").lower() == "y":
            await create_sample_slots(args.days, args.resources)

        print("\n✅ Database setup complete!")

    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
