#!/usr/bin/env python3
"""
Run the sync admin API (uvicorn).

The scheduler starts with the app when SCHEDULER_AUTOSTART=true.

Usage:
    python3 scripts/run_api.py
    python3 scripts/run_api.py --port 8080 --no-reload
"""
import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

backend = Path(__file__).resolve().parent.parent
load_dotenv(backend / ".env")
sys.path.insert(0, str(backend / "src"))
os.chdir(backend)

import uvicorn

from config import Config
from utils.logger import setup_logging


def main():
    config = Config()
    parser = argparse.ArgumentParser(description="Run the matchday cache sync API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=config.api_port)
    parser.add_argument("--no-reload", action="store_true", help="disable auto-reload in development")
    args = parser.parse_args()

    setup_logging(config)
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=config.environment == "development" and not args.no_reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
