"""Alembic environment bound to the oasisnotes app.

The database URL is the one Flask-SQLAlchemy actually connects to, so a
relative ``sqlite:///`` URI lands in the same instance/ file the app uses.
Every table registered by ``oasisnotes.models`` (patients, notes,
oasis_section_g and its range checks) is in ``target_metadata``.
"""
import pathlib
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from oasisnotes import create_app  # noqa: E402
from oasisnotes.extensions import db  # noqa: E402

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

app = create_app()
with app.app_context():
    import oasisnotes.models  # noqa: F401,E402

    url = db.engine.url.render_as_string(hide_password=False)
    target_metadata = db.metadata

# batch mode so ALTERs on the sqlite dev database work
_options = dict(target_metadata=target_metadata, compare_type=True, render_as_batch=True)


def run_migrations_offline():
    context.configure(url=url, literal_binds=True, **_options)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    engine = engine_from_config({"sqlalchemy.url": url}, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **_options)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
