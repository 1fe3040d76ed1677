"""Programmatic Alembic upgrades over an existing pool."""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
ALEMBIC_INI = PROJECT_ROOT / "alembic.ini"


def _alembic_config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return config


def _upgrade(connection: Connection, config: Config, revision: str) -> None:
    # env.py picks the shared connection up instead of opening its own engine
    config.attributes["connection"] = connection
    command.upgrade(config, revision)


async def run_migrations(pool: AsyncEngine, revision: str = "head") -> None:
    """Apply all migrations up to *revision* on the database behind *pool*."""
    logger.info("Applying migrations up to %s", revision)
    async with pool.begin() as connection:
        await connection.run_sync(_upgrade, _alembic_config(), revision)
