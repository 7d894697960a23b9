"""Schema migrations for the SQLite subtask store."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from alembic import command
from alembic.config import Config
from alembic.util.exc import CommandError
from swarm_dispatch.coordinator.errors import StoreError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def migration_config(db_path: Path, *, root_dir: Path = PROJECT_ROOT) -> Config:
    """Alembic config bound to ``db_path`` with scripts taken from ``root_dir/alembic``."""

    alembic_dir = root_dir / "alembic"
    if not (alembic_dir / "versions").is_dir():
        raise StoreError(f"Migration scripts not found under {alembic_dir}.")
    config = Config(str(root_dir / "alembic.ini"))
    config.set_main_option("script_location", str(alembic_dir))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path, *, root_dir: Path = PROJECT_ROOT) -> None:
    """Migrate the store at ``db_path`` to head; failures surface as StoreError."""

    config = migration_config(db_path, root_dir=root_dir)
    try:
        command.upgrade(config, "head")
    except (CommandError, SQLAlchemyError) as error:
        raise StoreError(f"Schema migration failed for {db_path}: {error}") from error
    logger.debug("Subtask store %s migrated to head", db_path)
