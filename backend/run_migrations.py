"""Apply the Alembic revisions in migrations/ to a database.

Usage: python run_migrations.py [DATABASE_URL]

Without an argument the URL comes from `accountbook.config.settings`.
`alembic -c alembic.ini upgrade head` does the same from the command line.
"""
import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

BASE = Path(__file__).parent
MIGRATIONS_DIR = BASE / "migrations"
HEAD = "head"

logger = logging.getLogger("accountbook.migrations")


def alembic_config(database_url: str = None) -> Config:
    if database_url is None:
        from accountbook.config import settings
        database_url = settings.DATABASE_URL
    cfg = Config(str(BASE / "alembic.ini"))
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # ConfigParser interpolation
    cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    cfg.attributes["configure_logger"] = False
    return cfg


def current_revision(database_url: str):
    """The revision stamped in `alembic_version`, or None for an unmanaged database."""
    engine = create_engine(database_url)
    try:
        with engine.connect() as conn:
            if not inspect(conn).has_table("alembic_version"):
                return None
            return conn.exec_driver_sql("SELECT version_num FROM alembic_version").scalar()
    finally:
        engine.dispose()


def run(database_url: str = None, revision: str = HEAD) -> Config:
    """Upgrade `database_url` to `revision`."""
    cfg = alembic_config(database_url)
    url = cfg.get_main_option("sqlalchemy.url")
    before = current_revision(url)
    command.upgrade(cfg, revision)
    after = current_revision(url)
    if before == after:
        logger.info("migrations: none pending (at %s)", after)
    else:
        logger.info("migrations applied: %s -> %s", before or "empty", after)
    return cfg


def downgrade(database_url: str, revision: str) -> None:
    cfg = alembic_config(database_url)
    command.downgrade(cfg, revision)
    logger.info("migrations downgraded to %s", revision)


if __name__ == '__main__':
    logging.basicConfig(level="INFO")
    run(sys.argv[1] if len(sys.argv) > 1 else None)
