"""SELECT statements that resolve unique-key tuples back to stored rows.

``build_lookup_query`` turns a flat list of key values into one statement
with a parenthesised conjunction per record, joined by ``OR``. Key fields
whose value is blank are matched with ``IS NULL`` since ``= NULL`` never
matches anything in SQL.
"""

import logging
from typing import Any, Sequence

from psycopg import sql

from metagdb.infrastructure.database.db import is_blank
from metagdb.infrastructure.database.errors import (
    ArgumentCountError,
    ArgumentValueError,
    ArityMismatchError,
)

logger = logging.getLogger(__name__)

AUDIT_COLUMN = "id_change"


def require_names(names: Sequence[str] | None, what: str) -> list[str]:
    if names is None:
        raise ArgumentCountError(f"Not enough arguments: {what} are required")
    if isinstance(names, (str, bytes)) or not isinstance(names, Sequence):
        raise ArgumentValueError(f"{what.capitalize()} must be a sequence of column names")
    if not names:
        raise ArgumentValueError(f"No {what}")
    if not all(isinstance(n, str) and n for n in names):
        raise ArgumentValueError(f"{what.capitalize()} must be non-empty strings: {list(names)!r}")
    return list(names)


def require_values(values: Sequence[Any] | None, what: str) -> list[Any]:
    if values is None:
        raise ArgumentCountError(f"Not enough arguments: {what} are required")
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ArgumentValueError(f"{what.capitalize()} must be a sequence")
    if not values:
        raise ArgumentValueError(f"No {what}")
    return list(values)


def require_text(value: str | None, what: str) -> str:
    if value is None:
        raise ArgumentCountError(f"Not enough arguments: {what} is required")
    if not isinstance(value, str) or not value.strip():
        raise ArgumentValueError(f"Empty or invalid {what}: {value!r}")
    return value


def raw_sql(fragment: str) -> sql.SQL:
    # Caller SQL is not parsed, only shielded from placeholder expansion
    return sql.SQL(fragment.replace("%", "%%"))


def build_lookup_query(
        table: str,
        field_names: Sequence[str],
        values: Sequence[Any],
        id_query: str = "id",
) -> tuple[sql.Composed, list[Any]]:
    """Return the lookup statement and the values to bind to it, in order.

    ``values`` holds one run of ``len(field_names)`` values per record. The
    audit column is never part of the predicate. ``id_query`` is inserted
    as-is, so it may be any projection, e.g. ``"CONCAT(a, '_', b) AS key, id"``.
    Only ``%`` is escaped in ``id_query`` and ``table``. Field names are
    emitted as quoted identifiers and are not case-folded, so mixed-case
    names must match the column names exactly.
    """
    table = require_text(table, "table name")
    field_names = require_names(field_names, "field names")
    values = require_values(values, "values")
    id_query = require_text(id_query, "id query")

    if all(name == AUDIT_COLUMN for name in field_names):
        raise ArgumentValueError(f"No key fields besides {AUDIT_COLUMN}")

    width = len(field_names)
    if len(values) % width != 0:
        raise ArityMismatchError(
            f"Values must be multiples of field names. Found {len(values)} values vs {width} field names"
        )

    non_nulls: list[Any] = []
    records = []
    for start in range(0, len(values), width):
        conditions = []
        for name, value in zip(field_names, values[start:start + width]):
            if name == AUDIT_COLUMN:
                continue
            if is_blank(value):
                conditions.append(sql.SQL("{} IS NULL").format(sql.Identifier(name)))
            else:
                conditions.append(sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder()))
                non_nulls.append(value)
        records.append(sql.SQL("(") + sql.SQL(" AND ").join(conditions) + sql.SQL(")"))

    query = sql.SQL("SELECT {fields} FROM {table} WHERE {where}").format(
        fields=raw_sql(id_query),
        table=raw_sql(table),
        where=sql.SQL(" OR ").join(records),
    )
    logger.debug("Lookup on %s for %d records, %d bind values", table, len(records), len(non_nulls))
    return query, non_nulls
