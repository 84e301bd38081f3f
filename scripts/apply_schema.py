#!/usr/bin/env python3
"""Apply the boxoffice schema to DATABASE_URL."""
import asyncio
import os

import asyncpg

from boxoffice.repositories.schema import TABLES, apply_schema


async def main():
    conn = await asyncpg.connect(os.environ["DATABASE_URL"])
    try:
        await apply_schema(conn)
        print("Schema applied")

        # Verify
        count = await conn.fetchval(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ANY($1::text[])",
            list(TABLES),
        )
        print(f"{count}/{len(TABLES)} tables present")
    finally:
        await conn.close()

if __name__ == "__main__":
    asyncio.run(main())
