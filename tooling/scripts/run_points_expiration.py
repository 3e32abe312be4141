"""Run the loyalty points expiration sweep once.

Useful for backfills or when the in-process scheduler is disabled.

Example::
    python tooling/scripts/run_points_expiration.py --as-of 2025-01-31T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire loyalty points past their expiry date")
    parser.add_argument(
        "--as-of",
        type=dt.datetime.fromisoformat,
        default=None,
        help="ISO timestamp used as the expiry cutoff (defaults to now, UTC).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Members fetched per batch (defaults to LOYALTY_EXPIRATION_BATCH_SIZE).",
    )
    return parser.parse_args()


async def _run(as_of: dt.datetime | None, batch_size: int | None) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from hotelmarket_api.db.session import async_session  # type: ignore import-position
    from hotelmarket_api.jobs.loyalty.expiration import run_points_expiration  # type: ignore import-position

    return await run_points_expiration(session_factory=async_session, as_of=as_of, batch_size=batch_size)


def main() -> int:
    args = parse_args()
    if args.batch_size is not None and args.batch_size <= 0:
        logger.error("Batch size must be positive", batch_size=args.batch_size)
        return 1

    summary = asyncio.run(_run(args.as_of, args.batch_size))
    logger.success(
        "Loyalty points expiration completed",
        members_processed=summary.get("members_processed", 0),
        points_expired=summary.get("points_expired", 0),
        tier_changes=summary.get("tier_changes", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
