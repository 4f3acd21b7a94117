#!/usr/bin/env python3
"""Database bootstrap: wait for the database, then run Alembic migrations.

- Always run `alembic upgrade head` on startup.
- If migrations fail, fail fast (don't start with an unknown schema).
"""

import logging
import os
import sys
import time

from sqlalchemy import text

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.database import engine  # noqa: E402
from core.logging import setup_logging  # noqa: E402

logger = logging.getLogger("run_migrations")


def check_db_ready() -> bool:
    """Check if database is ready"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(here, "alembic"))
    return cfg


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def main(max_wait_s: int = 60) -> int:
    setup_logging()

    deadline = time.time() + max_wait_s
    while not check_db_ready():
        if time.time() >= deadline:
            logger.error(f"Database not ready after {max_wait_s}s")
            return 1
        logger.info("Waiting for database...")
        time.sleep(2)

    try:
        alembic_upgrade_head()
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        return 1

    logger.info("Migrations complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
