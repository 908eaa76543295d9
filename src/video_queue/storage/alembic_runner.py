"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def upgrade_head(db_path: Path) -> None:
    """Bring the queue database at ``db_path`` to the latest schema revision."""

    alembic_dir = PROJECT_ROOT / "alembic"
    if not alembic_dir.is_dir():
        raise RuntimeError(f"Alembic migrations not found at {alembic_dir}")

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(alembic_dir))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    logger.debug("Upgrading %s to head", db_path)
    command.upgrade(config, "head")
