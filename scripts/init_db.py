import argparse, asyncio
from typing import List
from secondact.db import apply_schema, close_pool, create_pool
from secondact.db.store import PgStore
from secondact.settings import get_settings

DEFAULT_CATEGORIES = [
    "Ballet", "Jazz", "Tap", "Lyrical", "Contemporary", "Hip-Hop", "Modern",
    "Character", "Musical Theatre", "Competition", "Recreational",
    "Performance", "Practice", "Costume", "Accessories",
]

async def init_db(categories: List[str], seed: bool = True):
    settings = get_settings()
    pool = await create_pool(settings)
    try:
        await apply_schema(pool)
        print("Schema applied")
        if seed:
            store = PgStore(pool)
            for name in categories:
                await store.upsert_category(name)
            print(f"Seeded {len(categories)} categories")
    finally:
        await close_pool(pool)

if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Create tables and seed costume categories")
    ap.add_argument('--no-seed', action='store_true', help='Only create the schema')
    ap.add_argument('--category', action='append', help='Seed this category instead of the defaults (repeatable)')
    args = ap.parse_args()
    asyncio.run(init_db(args.category or DEFAULT_CATEGORIES, seed=not args.no_seed))
