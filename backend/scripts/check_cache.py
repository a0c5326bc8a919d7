#!/usr/bin/env python3
"""
Print how many entries each cache namespace holds.
Exit code: 0 on success, 2 if the cache cannot be read.
"""

import asyncio
import sys
from pathlib import Path

# Load .env from backend or repo root
backend_dir = Path(__file__).resolve().parent.parent
for env_path in [backend_dir / ".env", backend_dir.parent / ".env"]:
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)
        break

sys.path.insert(0, str(backend_dir / "src"))


async def check_cache():
    from config import Config
    from database.cache import CacheError, build_cache

    cache = build_cache(Config())
    try:
        counts = await cache.stats()
    except CacheError as e:
        print("Error reading cache:", e, file=sys.stderr)
        sys.exit(2)

    width = max(len(ns) for ns in counts)
    for namespace, count in counts.items():
        print(f"{namespace:<{width}}  {count}")
    print(f"{'total':<{width}}  {sum(counts.values())}")


if __name__ == "__main__":
    asyncio.run(check_cache())
