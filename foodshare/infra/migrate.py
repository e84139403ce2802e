from __future__ import annotations

import os

from alembic import command
from alembic.config import Config


def run_upgrade_head(config_path: str = "alembic.ini") -> None:
    config = Config(config_path)
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


if __name__ == "__main__":
    run_upgrade_head()
