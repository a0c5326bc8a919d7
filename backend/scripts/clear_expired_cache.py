#!/usr/bin/env python3
"""
Delete expired rows from the api_cache table.

Usage:
    python3 scripts/clear_expired_cache.py
    python3 scripts/clear_expired_cache.py --namespace matches
"""

import argparse
import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from database.cache import NAMESPACES, CacheError, build_cache
from utils.logger import setup_logging


async def clear_expired(namespace):
    config = Config()
    setup_logging(config)
    cache = build_cache(config)

    try:
        deleted = await cache.delete_expired(namespace)
    except CacheError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)

    print(f"🧹 Deleted {deleted} expired entries from {namespace or 'all namespaces'}")


def main():
    parser = argparse.ArgumentParser(description="Delete expired cache entries")
    parser.add_argument("--namespace", choices=NAMESPACES, default=None)
    args = parser.parse_args()
    asyncio.run(clear_expired(args.namespace))


if __name__ == "__main__":
    main()
