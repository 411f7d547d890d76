from __future__ import annotations

from contextlib import contextmanager
from importlib import resources
import logging
from pathlib import Path
import sqlite3
from typing import Iterator, Optional

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig


_MIGRATIONS_PACKAGE = "themis.db_migration_scripts"

logger = logging.getLogger("themis")


@contextmanager
def _alembic_config(path: str | Path) -> Iterator[AlembicConfig]:
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with resources.as_file(resources.files(_MIGRATIONS_PACKAGE)) as script_location:
        alembic_cfg = AlembicConfig()
        alembic_cfg.set_main_option("script_location", str(script_location))
        alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
        yield alembic_cfg


def migrate_db(path: str | Path, revision: str = "head") -> None:
    logger.info("Upgrading check run database %s to %s", path, revision)
    with _alembic_config(path) as alembic_cfg:
        alembic_command.upgrade(alembic_cfg, revision)


def downgrade_db(path: str | Path, revision: str) -> None:
    logger.info("Downgrading check run database %s to %s", path, revision)
    with _alembic_config(path) as alembic_cfg:
        alembic_command.downgrade(alembic_cfg, revision)


def current_revision(path: str | Path) -> Optional[str]:
    conn = sqlite3.connect(str(path))
    try:
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
    except sqlite3.OperationalError:
        return None
    finally:
        conn.close()
    return None if row is None else row[0]
