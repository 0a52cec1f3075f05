import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from psycopg import Connection
from psycopg import sql

from metagdb.infrastructure.database.db import execute
from metagdb.infrastructure.database.errors import (
    ArgumentCountError,
    ArgumentValueError,
    ArityMismatchError,
)
from metagdb.infrastructure.database.lookup import (
    AUDIT_COLUMN,
    build_lookup_query,
    raw_sql,
    require_names,
    require_text,
    require_values,
)

logger = logging.getLogger(__name__)

KeyMap = dict[Any, Any]


def require_max_rows(max_rows: int | None) -> int:
    if max_rows is None:
        raise ArgumentCountError("Not enough arguments: max_rows is required")
    if isinstance(max_rows, bool) or not isinstance(max_rows, int) or max_rows < 1:
        raise ArgumentValueError(f"Invalid value for max_rows: {max_rows!r}")
    return max_rows


def require_flag(changed: bool | int | None) -> bool:
    if changed is None:
        raise ArgumentCountError("Not enough arguments: changed flag is required")
    if isinstance(changed, bool):
        return changed
    if isinstance(changed, int) and changed in (0, 1):
        return bool(changed)
    raise ArgumentValueError(f"Invalid value for changed flag: {changed!r}")


def build_upsert_query(
        table: str,
        unique_field_names: Sequence[str],
        field_names: Sequence[str],
        max_rows: int = 1,
) -> sql.Composed:
    """Multi-row INSERT for ``max_rows`` records that only updates on change.

    A conflicting record is updated only if at least one column outside the
    unique key and the audit column differs from the stored row. When no such
    column exists the statement never updates. Either way ``id_change`` is
    returned for every row actually written and for nothing else.

    ``table`` is raw SQL with ``%`` escaped. Column names are quoted
    identifiers and are not case-folded, so ``"sampleId"`` only matches a
    column created with exactly that spelling.
    """
    table = require_text(table, "table name")
    unique_field_names = require_names(unique_field_names, "unique field names")
    field_names = require_names(field_names, "field names")
    max_rows = require_max_rows(max_rows)

    row = sql.SQL("({})").format(sql.SQL(", ").join([sql.Placeholder()] * len(field_names)))
    insert = sql.SQL("INSERT INTO {table} ({cols}) VALUES {rows}").format(
        table=raw_sql(table),
        cols=sql.SQL(", ").join(sql.Identifier(c) for c in field_names),
        rows=sql.SQL(", ").join([row] * max_rows),
    )

    uniques = set(unique_field_names)
    update_cols = [c for c in field_names if c not in uniques]
    set_pairs = [sql.SQL("{c} = EXCLUDED.{c}").format(c=sql.Identifier(c)) for c in update_cols]
    # NULL != NULL is never true, compare as text with NULL folded to ''
    guards = [
        sql.SQL("COALESCE({table}.{c}::text, '') != COALESCE(EXCLUDED.{c}::text, '')").format(
            table=raw_sql(table),
            c=sql.Identifier(c),
        )
        for c in update_cols if c != AUDIT_COLUMN
    ]

    if not guards:
        conflict = sql.SQL(" ON CONFLICT DO NOTHING")
    else:
        conflict = sql.SQL(" ON CONFLICT ({pk}) DO UPDATE SET {set} WHERE {where}").format(
            pk=sql.SQL(", ").join(sql.Identifier(c) for c in unique_field_names),
            set=sql.SQL(", ").join(set_pairs),
            where=sql.SQL(" OR ").join(guards),
        )
    returning = sql.SQL(" RETURNING {}").format(sql.Identifier(AUDIT_COLUMN))
    return insert + conflict + returning


@dataclass(frozen=True)
class UpsertRequest:
    """One validated call of :func:`bulk_upsert`.

    ``values`` holds ``len(field_names)`` values per record, ``unique_values``
    holds ``len(unique_field_names)`` values per record, both in the same
    record order.
    """

    table: str
    values: Sequence[Any]
    unique_values: Sequence[Any]
    field_names: Sequence[str]
    unique_field_names: Sequence[str]
    changed: bool
    id_query: str
    max_rows: int = 1

    def __post_init__(self) -> None:
        table = require_text(self.table, "table name")
        values = require_values(self.values, "values")
        unique_values = require_values(self.unique_values, "unique values")
        field_names = require_names(self.field_names, "field names")
        unique_field_names = require_names(self.unique_field_names, "unique field names")
        id_query = require_text(self.id_query, "id query")
        max_rows = require_max_rows(self.max_rows)
        changed = require_flag(self.changed)

        if all(name == AUDIT_COLUMN for name in unique_field_names):
            raise ArgumentValueError(f"No unique key fields besides {AUDIT_COLUMN}")
        if len(values) % len(field_names) != 0:
            raise ArityMismatchError(
                f"Values must be multiples of field names. Found {len(values)} values vs {len(field_names)} field names"
            )
        if len(unique_values) % len(unique_field_names) != 0:
            raise ArityMismatchError(
                f"Unique values must be multiples of unique field names. "
                f"Found {len(unique_values)} values vs {len(unique_field_names)} field names"
            )
        rows = len(values) // len(field_names)
        unique_rows = len(unique_values) // len(unique_field_names)
        if rows != unique_rows:
            raise ArityMismatchError(
                f"Values and unique values must represent the same number of records. Found {rows} vs {unique_rows}"
            )

        for name, value in (
            ("table", table),
            ("values", values),
            ("unique_values", unique_values),
            ("field_names", field_names),
            ("unique_field_names", unique_field_names),
            ("id_query", id_query),
            ("max_rows", max_rows),
            ("changed", changed),
        ):
            object.__setattr__(self, name, value)

    @classmethod
    def from_rows(
            cls,
            table: str,
            rows: Sequence[Mapping[str, Any]],
            field_names: Sequence[str],
            unique_field_names: Sequence[str],
            *,
            changed: bool = False,
            id_query: str = "id",
            max_rows: int = 1,
    ) -> "UpsertRequest":
        """Flatten mapping rows into the positional layout. Missing keys become NULL."""
        if rows is None:
            raise ArgumentCountError("Not enough arguments: rows are required")
        field_names = require_names(field_names, "field names")
        unique_field_names = require_names(unique_field_names, "unique field names")
        values = [row.get(c) for row in rows for c in field_names]
        unique_values = [row.get(c) for row in rows for c in unique_field_names]
        return cls(table, values, unique_values, field_names, unique_field_names, changed, id_query, max_rows)

    @property
    def row_count(self) -> int:
        return len(self.values) // len(self.field_names)

    def batches(self) -> Iterator[tuple[list[Any], list[Any]]]:
        """Yield (values, unique values) per batch, full batches first.

        A record count that divides evenly by ``max_rows`` yields no
        trailing batch.
        """
        width = len(self.field_names)
        unique_width = len(self.unique_field_names)
        total = self.row_count
        for start in range(0, total, self.max_rows):
            stop = min(start + self.max_rows, total)
            yield (
                list(self.values[start * width:stop * width]),
                list(self.unique_values[start * unique_width:stop * unique_width]),
            )


def bulk_upsert(conn: Connection, request: UpsertRequest) -> tuple[KeyMap, bool]:
    """Insert or update the records of ``request`` and resolve their keys.

    Returns the key map built from the ``id_query`` projection (first column
    as key, second as value) for every submitted record, and the change flag:
    the seed from the request, or ``True`` once any batch wrote a row.
    The caller owns the transaction; nothing is committed here.
    """
    if conn is None:
        raise ArgumentCountError("Not enough arguments: connection is required")
    if not isinstance(request, UpsertRequest):
        raise ArgumentValueError(f"Expected an UpsertRequest, got {type(request).__name__}")

    changed = request.changed
    key_map: KeyMap = {}
    statements: dict[int, sql.Composed] = {}
    width = len(request.field_names)

    logger.info(
        "[bulk_upsert] table=%s records=%d max_rows=%d",
        request.table,
        request.row_count,
        request.max_rows,
    )

    with conn.cursor() as cursor:
        for number, (values, uniques) in enumerate(request.batches(), start=1):
            size = len(values) // width
            query = statements.get(size)
            if query is None:
                query = build_upsert_query(request.table, request.unique_field_names, request.field_names, size)
                statements[size] = query

            execute(cursor, query, values)
            # One row is enough to know that something was written
            written = cursor.fetchone() is not None
            changed = changed or written

            lookup, non_nulls = build_lookup_query(request.table, request.unique_field_names, uniques, request.id_query)
            execute(cursor, lookup, non_nulls)
            found = cursor.fetchall()
            for row in found:
                key_map[row[0]] = row[1] if len(row) > 1 else None

            logger.debug(
                "[bulk_upsert] table=%s batch=%d rows=%d written=%s resolved=%d",
                request.table,
                number,
                size,
                written,
                len(found),
            )

    logger.info("[bulk_upsert] table=%s keys=%d changed=%s", request.table, len(key_map), changed)
    return key_map, changed


def upsert_records(
        conn: Connection,
        table: str,
        values: Sequence[Any],
        unique_values: Sequence[Any],
        field_names: Sequence[str],
        unique_field_names: Sequence[str],
        changed: bool,
        id_query: str,
        max_rows: int = 1,
) -> tuple[KeyMap, bool]:
    if conn is None:
        raise ArgumentCountError("Not enough arguments: connection is required")
    request = UpsertRequest(
        table=table,
        values=values,
        unique_values=unique_values,
        field_names=field_names,
        unique_field_names=unique_field_names,
        changed=changed,
        id_query=id_query,
        max_rows=max_rows,
    )
    return bulk_upsert(conn, request)
