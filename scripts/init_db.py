#!/usr/bin/env python3
"""Create the review automation tables.

Creates every table from the models directly, for local development and
tests. Deployed databases are managed with Alembic (`alembic upgrade head`).

Usage:
    python scripts/init_db.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from packages.core.src.config import get_config
from packages.database.src.session import close_db, init_db, resolve_database_url


async def main():
    """Initialize the database."""
    url = resolve_database_url(get_config().postgres_url)
    print(f"Creating tables on {url.split('@')[-1]}...")
    try:
        await init_db()
        print("Automation tables created.")
    except Exception as e:
        print(f"Error creating tables: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
