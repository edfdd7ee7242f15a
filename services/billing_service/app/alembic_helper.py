import asyncio
import os

from alembic import command
from alembic.config import Config
from loguru import logger

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "db", "migrations")


def alembic_config(database_dsn: str) -> Config:
    alembic_cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", MIGRATIONS_DIR)
    alembic_cfg.set_main_option("sqlalchemy.url", database_dsn)
    return alembic_cfg


async def run_alembic_migrations(database_dsn: str) -> None:
    """Apply all migrations up to head using the synchronous DSN.

    Alembic is blocking, so the upgrade runs in a worker thread.
    """
    alembic_ini_path = os.path.join(MIGRATIONS_DIR, "alembic.ini")
    if not os.path.exists(alembic_ini_path):
        logger.warning("Alembic config not found at {}, skipping migrations", alembic_ini_path)
        return
    try:
        logger.info("Running Alembic migrations")
        await asyncio.to_thread(command.upgrade, alembic_config(database_dsn), "head")
        logger.info("Alembic migrations applied")
    except Exception as exc:
        logger.error("Alembic migration failed: {}", exc)
        raise
