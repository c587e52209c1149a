"""
Outbox Schema

DDL for the local_task_message table on each supported backend.
"""

from ..database.adapter import DatabaseAdapter, DatabaseBackend, SQLiteConnection

TABLE_NAME = "local_task_message"

POSTGRES_DDL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id             BIGSERIAL PRIMARY KEY,
    task_id        VARCHAR(128) NOT NULL,
    task_name      VARCHAR(255) NOT NULL DEFAULT '',
    notify_type    VARCHAR(32)  NOT NULL,
    notify_config  TEXT         NOT NULL DEFAULT '{{}}',
    status         SMALLINT     NOT NULL DEFAULT 0,
    parameter_json TEXT         NOT NULL DEFAULT '',
    house_number   SMALLINT     NOT NULL,
    create_time    TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
    update_time    TIMESTAMPTZ  NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_task_id ON {TABLE_NAME} (task_id);
CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_scan
    ON {TABLE_NAME} (house_number, status, id);
"""

SQLITE_DDL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id        TEXT    NOT NULL,
    task_name      TEXT    NOT NULL DEFAULT '',
    notify_type    TEXT    NOT NULL,
    notify_config  TEXT    NOT NULL DEFAULT '{{}}',
    status         INTEGER NOT NULL DEFAULT 0,
    parameter_json TEXT    NOT NULL DEFAULT '',
    house_number   INTEGER NOT NULL,
    create_time    TEXT    NOT NULL,
    update_time    TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_task_id ON {TABLE_NAME} (task_id);
CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_scan
    ON {TABLE_NAME} (house_number, status, id);
"""


def ddl_for(backend: DatabaseBackend) -> str:
    """Return the CREATE statements for a backend."""
    if backend == DatabaseBackend.POSTGRESQL:
        return POSTGRES_DDL
    return SQLITE_DDL


async def ensure_schema(db: DatabaseAdapter) -> None:
    """Create the outbox table and indexes if they do not exist."""
    ddl = ddl_for(db.backend)
    async with db.connection() as conn:
        if isinstance(conn, SQLiteConnection):
            await conn.executescript(ddl)
        else:
            # asyncpg runs multi-statement scripts when no arguments are bound
            await conn.execute(ddl)
