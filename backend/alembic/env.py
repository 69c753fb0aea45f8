"""
Migration runner for the task store.

The database comes from `-x db_path=...` (what TaskStore.init_db passes),
then TSKR_DATABASE_PATH, then sqlalchemy.url in alembic.ini.
Revisions are hand-written SQL; there is no model metadata to autogenerate from.
"""
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def database_url() -> str:
    db_path = context.get_x_argument(as_dictionary=True).get("db_path") or os.environ.get("TSKR_DATABASE_PATH")
    if db_path:
        return f"sqlite:///{db_path}"
    return config.get_main_option("sqlalchemy.url")


def run_migrations() -> None:
    url = database_url()
    if context.is_offline_mode():
        # Emit SQL only
        context.configure(url=url, target_metadata=None, literal_binds=True)
        with context.begin_transaction():
            context.run_migrations()
        return

    # render_as_batch: SQLite cannot ALTER most columns in place
    with create_engine(url).connect() as connection:
        context.configure(connection=connection, target_metadata=None, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


run_migrations()
