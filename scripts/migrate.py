"""
Run database migrations.

Usage:
  python -m scripts.migrate
  python -m scripts.migrate --dry-run   # print the pending versions only
"""
from __future__ import annotations

import argparse
import logging

from config import load_settings
from database import get_database
from migrations import MIGRATIONS, _get_current_version, apply_migrations


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run PeakLog MongoDB migrations.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migrations without applying them.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = _parse_args(argv)
    settings = load_settings()
    if args.dry_run:
        current = _get_current_version(get_database(settings))
        pending = [(v, d) for v, d, _ in MIGRATIONS if v > current]
        for version, description in pending:
            logging.info("Pending migration %s: %s", version, description)
        logging.info("Current version: %s, pending: %s", current, len(pending))
        return
    latest = apply_migrations(settings=settings, logger=logging.getLogger(__name__))
    logging.info("Migrations complete. Current version: %s", latest)


if __name__ == "__main__":
    main()
