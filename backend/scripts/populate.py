#!/usr/bin/env python3
"""
Populate the fixtures cache across many leagues and dates (foreground).

Ctrl+C stops after the current cell; partial progress is kept.

Usage:
    python3 scripts/populate.py --profile quick
    python3 scripts/populate.py --profile full
    python3 scripts/populate.py --profile custom --leagues 39,140 --past-days 10 --future-days 3
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config, ConfigurationError, _parse_int_list
from sync.commands import ValidationError
from sync.populator import FULL_PROFILE, QUICK_PROFILE, PopulationJob
from sync.services import build_services
from utils.logger import setup_logging


async def populate(args) -> int:
    config = Config()
    setup_logging(config)
    services = build_services(config)
    populator = services.populator

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, populator.stop)

    try:
        if args.profile == "custom":
            job = PopulationJob.custom(
                _parse_int_list(args.leagues) if args.leagues else None,
                past_days=args.past_days,
                future_days=args.future_days,
                batch_size=args.batch_size,
                batch_delay=args.batch_delay,
            )
        else:
            job = QUICK_PROFILE if args.profile == "quick" else FULL_PROFILE

        print(f"🚀 Starting {args.profile} population (Ctrl+C to stop)...\n")
        stats = await populator.run(job)
        print(json.dumps(stats, indent=2, default=str))
        if stats["stopped"]:
            print("\n⏹️  Population stopped early")
        else:
            print("\n✅ Population completed")
        return 0 if not stats["failed"] else 1
    except ValidationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        await services.aclose()


def main():
    parser = argparse.ArgumentParser(description="Bulk-populate the fixtures cache")
    parser.add_argument("--profile", choices=["quick", "full", "custom"], default="quick")
    parser.add_argument("--leagues", default=None, help="custom: comma-separated league ids (default: all)")
    parser.add_argument("--past-days", type=int, default=30)
    parser.add_argument("--future-days", type=int, default=7)
    parser.add_argument("--batch-size", type=int, default=5)
    parser.add_argument("--batch-delay", type=float, default=None, help="seconds between league batches")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(populate(args)))
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
