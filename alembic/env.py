from logging.config import fileConfig

from alembic import context
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection

from marketplace import models  # noqa: F401  (registers tables on Base.metadata)
from marketplace.config import settings
from marketplace.database import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata

# Present in every schema revision; used to detect create_all() bootstrapped databases.
_SENTINEL_TABLE = "rfqs"


def _stamp_bootstrapped_sqlite(connection: Connection) -> None:
    """Stamp head on local SQLite files built by `Base.metadata.create_all()`.

    Those databases have the lifecycle tables but no alembic_version row, so a
    plain upgrade would try to create every table again.
    """
    if connection.dialect.name != "sqlite":
        return

    tables = set(inspect(connection).get_table_names())
    if _SENTINEL_TABLE not in tables:
        return
    if "alembic_version" in tables:
        stamped = connection.execute(text("select count(*) from alembic_version")).scalar()
        if stamped:
            return

    head = ScriptDirectory.from_config(config).get_current_head()
    if not head:
        return
    connection.execute(
        text(
            "create table if not exists alembic_version ("
            "version_num varchar(64) not null primary key)"
        )
    )
    connection.execute(text("insert into alembic_version(version_num) values (:v)"), {"v": head})
    connection.commit()


def run_migrations_offline() -> None:
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=settings.database_url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # main.py hands over its own connection when RUN_MIGRATIONS_ON_START is set.
    connection = config.attributes.get("connection")
    owns_connection = connection is None
    if owns_connection:
        connection = create_engine(settings.database_url, future=True).connect()

    try:
        _stamp_bootstrapped_sqlite(connection)
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite cannot ALTER constraints in place.
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()
    finally:
        if owns_connection:
            connection.close()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
