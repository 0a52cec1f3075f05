import logging
import time
from typing import Any, Sequence

import psycopg
from psycopg import Connection, Cursor, sql

from metagdb.infrastructure.database.errors import (
    ArgumentCountError,
    ArgumentValueError,
    StoreError,
)

logger = logging.getLogger(__name__)

Query = str | sql.Composable


def is_blank(value: Any) -> bool:
    """True for values that have to reach the database as NULL."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def normalize_value(value: Any) -> Any:
    # Literal 0 and padded strings with content are kept as they are
    return None if is_blank(value) else value


def normalize_values(values: Sequence[Any]) -> list[Any]:
    return [normalize_value(v) for v in values]


def render(cursor: Cursor | None, query: Query) -> str:
    if isinstance(query, sql.Composable):
        return query.as_string(cursor)
    return str(query)


def execute(cursor: Cursor, query: Query, values: Sequence[Any] | None = None) -> Cursor:
    """Execute ``query`` on ``cursor`` after turning blank values into NULL.

    A plain string without values is executed without parameters; composed
    statements always get a (possibly empty) parameter list. Driver
    failures are re-raised as :class:`StoreError` with the statement text
    and the bound values attached. Returns the cursor so the caller can
    fetch from it.
    """
    if cursor is None or query is None:
        raise ArgumentCountError("Not enough arguments: cursor and query are required")
    if values is None:
        values = []
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ArgumentValueError("Values must be a sequence, got %r" % type(values).__name__)

    params = normalize_values(values)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Executing %s with %d bind values", render(cursor, query), len(params))
    try:
        # Composed statements escape literal % as %%, which psycopg only
        # unescapes when a parameter list is passed
        if params or isinstance(query, sql.Composable):
            cursor.execute(query, params)
        else:
            cursor.execute(query)
    except psycopg.Error as err:
        raise StoreError(str(err).strip(), statement=render(cursor, query), params=params) from err
    return cursor


def ip_to_int(address: str) -> int:
    """Pack a dotted IPv4 address the way the ``change.ip`` column stores it.

    The first octet is the least significant byte. Anything that is not
    four octets maps to 0.
    """
    parts = str(address).split(".")
    if len(parts) != 4:
        return 0
    try:
        a, b, c, d = (int(p) for p in parts)
    except ValueError:
        return 0
    return ((d * 256 + c) * 256 + b) * 256 + a


def register_change(
        conn: Connection,
        *,
        username: str | None = None,
        ip: str = "127.0.0.1",
) -> int:
    """Reserve a row in ``change`` and return its id.

    The id is what gets written into the ``id_change`` audit column of every
    record touched by one import.
    """
    if conn is None:
        raise ArgumentCountError("Not enough arguments: connection is required")
    username = username or conn.info.user
    with conn.cursor() as cursor:
        execute(
            cursor,
            "INSERT INTO change (username, ts, ip) VALUES (%s, %s, %s) RETURNING id",
            [username, int(time.time()), ip_to_int(ip)],
        )
        row = cursor.fetchone()
    if not row:
        raise StoreError("Registration of change id failed")
    logger.info("Change registered. Table='%s', id=%d, username='%s'", "change", row[0], username)
    return row[0]
