"""Central database table definitions.

## Users
People allowed to use the lab computers. The code (student or staff number)
is the business key and must be unique.

## Sessions
One row each time a user signs in at a station. Sessions refer to users by
code only; there is no foreign key constraint.
"""

import logging

import sqlalchemy as sa
from sqlalchemy.ext import asyncio as sa_asyncio


logger = logging.getLogger(__name__)

metadata = sa.MetaData()

users_table = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("code", sa.String(50), unique=True, nullable=False),
    sa.Column("name", sa.String(100), nullable=False),
    sa.Column("profile", sa.String(50), nullable=False),
    sa.Column("school", sa.String(100), nullable=False),
    sa.Column(
        "registered_at", sa.DateTime, nullable=False, server_default=sa.func.now()
    ),
)

sessions_table = sa.Table(
    "sessions",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("code", sa.String(50), nullable=False, index=True),
    sa.Column("activity", sa.Text, nullable=True),
    sa.Column("duration", sa.String(50), nullable=True),
    sa.Column("station", sa.Integer, nullable=True),
    sa.Column("session_date", sa.Date, nullable=True),
    sa.Column("start_time", sa.Time, nullable=True),
)

# PostgreSQL only. Tables restored from a dump sometimes lose the sequence
#   behind the id column, after which every insert fails on a NULL id.
SERIAL_SEQUENCE_QUERY = "SELECT pg_get_serial_sequence(:table_name, 'id')"
REPAIR_SEQUENCE_STATEMENTS = (
    "CREATE SEQUENCE IF NOT EXISTS {table}_id_seq OWNED BY {table}.id",
    "SELECT setval('{table}_id_seq', COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)",
    "ALTER TABLE {table} ALTER COLUMN id SET DEFAULT nextval('{table}_id_seq')",
)


async def create_tables(engine: sa_asyncio.AsyncEngine) -> None:
    """Create the tables if they don't already exist and repair sequences."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        if conn.dialect.name != "postgresql":
            return
        for table in metadata.sorted_tables:
            result = await conn.execute(
                sa.text(SERIAL_SEQUENCE_QUERY), {"table_name": table.name}
            )
            if result.scalar() is not None:
                continue
            logger.warning("Sequence for %s.id is missing, recreating it.", table.name)
            for statement in REPAIR_SEQUENCE_STATEMENTS:
                await conn.execute(sa.text(statement.format(table=table.name)))
