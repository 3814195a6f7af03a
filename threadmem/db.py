"""SQLite connection helper shared by the memory stores.

Every store opens a short-lived ``aiosqlite`` connection per operation and
closes it when done.  Connections run in WAL mode with a busy timeout so that
concurrent writers queue on SQLite's write lock instead of failing, and with
foreign keys on so that deleting a thread cascades to its messages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite

if TYPE_CHECKING:
    from pathlib import Path

BUSY_TIMEOUT_MS = 5000


async def get_connection(db_path: Path, schema: str | None = None) -> aiosqlite.Connection:
    """Open a connection to *db_path*, creating parent directories as needed.

    If *schema* is given it is executed as a script before the connection is
    returned (all statements should be ``CREATE ... IF NOT EXISTS``).
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    try:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        await db.execute("PRAGMA foreign_keys=ON")
        if schema:
            await db.executescript(schema)
            await db.commit()
    except BaseException:
        await db.close()
        raise
    return db
