#!/usr/bin/env python3
"""
Run a single sync pass in the foreground.

Usage:
    python3 scripts/sync_now.py                          # today's fixtures
    python3 scripts/sync_now.py --mode smart
    python3 scripts/sync_now.py --mode force --scope live
    python3 scripts/sync_now.py --mode historical --days 14
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config, ConfigurationError
from sync.commands import SyncAction, ValidationError, execute_sync_command, parse_force_scope
from sync.services import build_services
from utils.logger import setup_logging

MODES = {
    "today": SyncAction.START_SYNC,
    "smart": SyncAction.SMART_SYNC,
    "force": SyncAction.FORCE_SYNC,
    "historical": SyncAction.HISTORICAL_SYNC,
}


async def sync_now(args) -> int:
    config = Config()
    setup_logging(config)
    services = build_services(config)

    try:
        scope = parse_force_scope(args.scope) if args.mode == "force" else None
        print(f"🔄 Running {args.mode} sync for {len(services.orchestrator.leagues)} leagues...\n")
        result = await execute_sync_command(services.orchestrator, MODES[args.mode], scope, args.days)
        print(json.dumps(result, indent=2, default=str))
        print(f"\n✅ Done. API calls today: {services.api.calls_today}/{config.daily_request_limit}")
        return 0 if not result.get("failed") else 1
    except ValidationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    finally:
        await services.aclose()


def main():
    parser = argparse.ArgumentParser(description="Run one sync pass against the fixtures cache")
    parser.add_argument("--mode", choices=sorted(MODES), default="today")
    parser.add_argument("--scope", default=None, help="force mode: today | yesterday | tomorrow | live")
    parser.add_argument("--days", type=int, default=None, help="historical mode: window in days (1-365)")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(sync_now(args)))
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
