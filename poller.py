#!/usr/bin/env python3
"""
LinkupTracker — LibreLinkUp poller.

Fetches the latest glucose reading from LibreLinkUp and stores it in SQLite.
Designed to be run every 5 minutes via cron or a scheduler.

Usage:
    python3 poller.py                     # store the latest reading if new
    python3 poller.py --dry-run           # print the latest reading only
    python3 poller.py --series            # store the whole graph series
    python3 poller.py --series --dry-run --unit mmol
    python3 poller.py --status            # show which credentials are in use
"""

from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from db import get_db, init_db, store_reading
from glucose_units import project
from libre_client import DEFAULT_TIMEOUT, LibreLinkUpClient
from libre_errors import ConfigurationError, LibreLinkUpError
from libre_measurements import compute_delta

# -- Paths --
PROJECT_DIR = Path.home() / "LinkupTracker"
LOG_DIR = PROJECT_DIR / "logs"
ENV_PATH = PROJECT_DIR / ".env"

logger = logging.getLogger("poller")


def setup_logging(log_dir: Path = LOG_DIR) -> None:
    """Send poller and client logs to a rotating file: 5 MB max, keep 3 backups."""
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        str(log_dir / "poller.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    )
    for name in ("poller", "libre_client", "libre_measurements"):
        named = logging.getLogger(name)
        named.setLevel(logging.DEBUG)
        named.addHandler(file_handler)


def poll(
    client: LibreLinkUpClient,
    conn: Optional[sqlite3.Connection],
    unit: Optional[str] = None,
) -> bool:
    """Fetch the latest reading and store it if new. Returns True if stored.

    With conn=None the reading is printed and nothing is written.
    """
    reading = client.fetch_latest_measurement()
    shown = project(reading, unit or client.store.preferred_unit)
    logger.info(
        "Fetched reading: %s %s (%s) at %s",
        shown.value, shown.unit, shown.trend, shown.timestamp_iso,
    )

    if conn is None:
        print(json.dumps(shown.to_dict(), indent=2))
        return False

    if reading.timestamp_iso is None:
        logger.warning("Latest reading has no timestamp, not storing it")
        print("Reading has no timestamp; nothing stored.")
        return False

    stored = store_reading(conn, reading.timestamp_iso, reading.mg_dl, reading.trend)
    conn.commit()
    if not stored:
        logger.info("Duplicate reading, already stored for %s", reading.timestamp_iso)
        print("No new reading (latest already stored)")
        return False

    logger.info("Stored reading: %.0f mg/dL %s at %s", reading.mg_dl, reading.trend, reading.timestamp_iso)
    print(f"Reading stored: {shown.value} {shown.unit} {shown.trend} at {shown.timestamp_iso}")
    return True


def poll_series(
    client: LibreLinkUpClient,
    conn: Optional[sqlite3.Connection],
    unit: Optional[str] = None,
) -> int:
    """Fetch the graph series and store new readings. Returns the number stored."""
    series = client.fetch_measurement_series()
    target = unit or client.store.preferred_unit
    shown = [project(m, target) for m in series]
    delta = compute_delta(shown)
    logger.info("Fetched %d series readings", len(series))

    if conn is None:
        print(json.dumps({
            "count": len(shown),
            "delta": {"delta": delta.delta, "unit": delta.unit} if delta else None,
            "readings": [m.to_dict() for m in shown],
        }, indent=2))
        return 0

    stored = 0
    for reading in series:
        if store_reading(conn, reading.timestamp_iso, reading.mg_dl, reading.trend):
            stored += 1
    conn.commit()

    logger.info("Stored %d of %d series readings", stored, len(series))
    print(f"Stored {stored} new readings ({len(series) - stored} already present)")
    return stored


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Poll LibreLinkUp for glucose readings")
    parser.add_argument("--dry-run", action="store_true", help="Print readings without storing")
    parser.add_argument("--series", action="store_true", help="Fetch the whole graph series")
    parser.add_argument("--status", action="store_true", help="Print the credential status and exit")
    parser.add_argument("--unit", default=None, help="Display unit for printed output (mg/dL or mmol/L)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    return parser


def main(argv: Optional[list[str]] = None, client: Optional[LibreLinkUpClient] = None) -> int:
    args = build_parser().parse_args(argv)
    client = client or LibreLinkUpClient(timeout=args.timeout)

    if args.status:
        print(json.dumps(client.get_credential_status().to_dict(), indent=2))
        return 0

    conn = None
    if not args.dry_run:
        init_db(args.db)
        conn = get_db(args.db)

    try:
        if args.series:
            poll_series(client, conn, args.unit)
        else:
            poll(client, conn, args.unit)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        print("Error: missing LibreLinkUp credentials. Set LLU_EMAIL and LLU_PASSWORD in .env.")
        return 1
    except LibreLinkUpError as exc:
        logger.error("Glucose temporarily unavailable: %s", exc)
        print(f"Error: {exc}")
        return 1
    finally:
        if conn is not None:
            conn.close()
    return 0


def run() -> int:
    """Console entry point: load .env, set up logging, poll."""
    load_dotenv(dotenv_path=str(ENV_PATH))
    setup_logging()
    try:
        return main()
    except Exception as exc:
        logger.exception("Fatal error during polling: %s", exc)
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(run())
