#!/usr/bin/env python3
"""
Init container for Not At Home.

Runs once per deploy, before the API and the sweep worker start:

1. Wait for Postgres to accept connections (it often starts alongside us)
2. ``alembic upgrade head``
3. Log the revision the store is now at

Usage:
    python scripts/init_container.py

Exit codes:
    0 - Success
    1 - Database unreachable or migration failure
"""

import logging
import subprocess
import sys
import time
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from notathome.config import get_settings  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [init] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("init_container")

PROJECT_DIR = Path(__file__).resolve().parent.parent
WAIT_ATTEMPTS = 30
WAIT_DELAY_SECONDS = 2.0


def wait_for_database(url: str) -> bool:
    """Poll ``SELECT 1`` until Postgres answers or the attempts run out."""
    engine = create_engine(url, pool_pre_ping=True)
    try:
        for attempt in range(1, WAIT_ATTEMPTS + 1):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("Database is accepting connections")
                return True
            except OperationalError as e:
                logger.info(f"Waiting for database ({attempt}/{WAIT_ATTEMPTS}): {e.orig}")
                time.sleep(WAIT_DELAY_SECONDS)
    finally:
        engine.dispose()

    logger.error("Database did not become reachable")
    return False


def run_alembic(*args: str) -> str | None:
    """Run an alembic command from the project root; None on failure."""
    try:
        result = subprocess.run(
            ["alembic", *args],
            cwd=PROJECT_DIR,
            capture_output=True,
            text=True,
            check=True,
            timeout=300,
        )
    except subprocess.TimeoutExpired:
        logger.error(f"alembic {' '.join(args)} timed out after 5 minutes")
        return None
    except subprocess.CalledProcessError as e:
        logger.error(f"alembic {' '.join(args)} failed with exit code {e.returncode}")
        for line in (e.stderr or "").strip().splitlines():
            logger.error(f"alembic: {line}")
        return None
    except FileNotFoundError:
        logger.error("alembic command not found")
        return None

    return result.stdout


def main() -> int:
    settings = get_settings()

    if not wait_for_database(settings.database_url_sync):
        return 1

    logger.info("Applying migrations")
    output = run_alembic("upgrade", "head")
    if output is None:
        return 1
    for line in output.strip().splitlines():
        logger.info(f"alembic: {line}")

    current = run_alembic("current")
    if current:
        logger.info(f"Session store at revision {current.strip()}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
