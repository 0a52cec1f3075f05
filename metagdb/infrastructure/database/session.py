import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from psycopg import Connection

from metagdb.infrastructure.database.db import register_change

logger = logging.getLogger(__name__)


@dataclass
class ImportSession:
    id_change: int
    changed: bool = False


@contextmanager
def import_session(conn: Connection, username: str | None = None) -> Iterator[ImportSession]:
    """Run one import inside the caller's transaction.

    A change id is reserved up front. On exit the transaction is committed
    only if ``session.changed`` was set, otherwise it is rolled back so the
    reserved change row disappears again. Errors roll back and propagate.
    """
    session = ImportSession(id_change=register_change(conn, username=username))
    try:
        yield session
    except Exception:
        logger.exception("Import with change id %d failed, rolling back", session.id_change)
        conn.rollback()
        raise

    if session.changed:
        conn.commit()
        logger.info("Import with change id %d committed", session.id_change)
    else:
        conn.rollback()
        logger.info("No new records, change id %d rolled back", session.id_change)
