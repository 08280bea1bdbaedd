#!/usr/bin/env python3
"""
SEO Sync - Main Entry Point
===========================

Refresh coordination for third-party SEO data behind the agency dashboard.

Usage:
    python main.py --mode refresh --tenant <id> [--resource dashboard] [--force]
    python main.py --mode refresh               # one rotation batch
    python main.py --mode scheduler [--now]     # interval auto-refresh
    python main.py --help                       # Show help
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def main(argv=None):
    parser = argparse.ArgumentParser(description="SEO Sync refresh coordinator")
    parser.add_argument("--mode", choices=["refresh", "scheduler"], default="refresh")
    parser.add_argument("--now", action="store_true", help="scheduler mode: run one batch at startup")
    args, rest = parser.parse_known_args(argv)

    if args.mode == "scheduler":
        from scheduler.cron import main as scheduler_main

        asyncio.run(scheduler_main(run_now=args.now))
        return

    from seosync.jobs.refresh import main as refresh_main

    refresh_main(rest)


if __name__ == "__main__":
    main()
