"""Apply one SQL migration from backend/migrations inside a transaction."""

import argparse
import asyncio
import sys
from pathlib import Path

from feedrank.infra.postgres import close_pool, get_pool

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


async def apply_migration(name: str, *, down: bool = False) -> None:
    filename = f"{name}.down.sql" if down else f"{name}.sql"
    migration_path = MIGRATIONS_DIR / filename
    if not migration_path.exists():
        print(f"Migration file not found: {migration_path}")
        sys.exit(1)

    print(f"Applying migration: {filename}")
    sql = migration_path.read_text(encoding="utf-8")
    pool = await get_pool()
    try:
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(sql)
    finally:
        await close_pool()
    print("Migration applied successfully.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("name", help="migration name without extension, e.g. 0001_balanced_rank_schema")
    parser.add_argument("--down", action="store_true", help="apply the backward script")
    args = parser.parse_args()
    asyncio.run(apply_migration(args.name, down=args.down))
