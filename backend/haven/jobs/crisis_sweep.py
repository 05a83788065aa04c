"""
Run the crisis sweep once from the command line.

    haven-crisis-sweep [--as-of YYYY-MM-DD] [--concurrency N]

Prints the sweep summary as JSON. Exits 1 when any couple failed.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Optional

from haven.core.crisis import run_sweep
from haven.core.database import close_db, get_session_factory, init_db
from haven.core.timeutils import end_of_day

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("haven-crisis-sweep")


async def run_once(as_of: Optional[date] = None, concurrency: Optional[int] = None) -> dict:
    await init_db()
    try:
        summary = await run_sweep(
            get_session_factory(),
            as_of=end_of_day(as_of) if as_of else None,
            concurrency=concurrency,
        )
    finally:
        await close_db()
    return summary.to_dict()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Daily crisis scoring sweep")
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Score the window ending on this day (YYYY-MM-DD, UTC)",
    )
    parser.add_argument("--concurrency", type=int, default=None, help="Couples scored at once")
    args = parser.parse_args(argv)

    result = asyncio.run(run_once(args.as_of, args.concurrency))
    print(json.dumps(result, indent=2))

    if result["failed_count"]:
        log.error(f"{result['failed_count']} couple(s) failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
