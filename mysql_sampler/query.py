"""Run one query against a live connection and materialize the result."""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Sequence, Tuple

import mysql.connector

from .errors import QueryError, SchemaError

logger = logging.getLogger("mysql-sampler.query")


@dataclass
class QueryResult:
    """A fully fetched result set."""
    query: str
    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    @property
    def field_count(self) -> int:
        if self.columns:
            return len(self.columns)
        return len(self.rows[0]) if self.rows else 0

    def single_row(self, min_columns: int = 1) -> Sequence[Any]:
        """
        Return the only row of a single-row query.

        Extra rows are logged and ignored.

        Raises:
            SchemaError: no rows, or fewer than ``min_columns`` columns.
        """
        if not self.rows:
            raise SchemaError(f"`{self.query}' did not return any rows.", self.query)
        if self.field_count < min_columns:
            raise SchemaError(
                f"`{self.query}' returned less than {min_columns} columns.", self.query
            )
        if len(self.rows) > 1:
            logger.warning(f"[QUERY] `{self.query}' returned more than one row - ignoring further results.")
        return self.rows[0]


def execute(connection: Any, query: str) -> QueryResult:
    """
    Execute ``query`` and fetch every row client-side.

    The cursor is always closed, including on the error paths.

    Raises:
        QueryError: with reason ``rejected`` when execution fails and
            ``fetch`` when the rows cannot be retrieved.
    """
    try:
        cursor = connection.cursor()
    except mysql.connector.Error as e:
        raise _failed(query, QueryError.REJECTED, e) from e

    try:
        try:
            cursor.execute(query)
        except mysql.connector.Error as e:
            raise _failed(query, QueryError.REJECTED, e) from e

        try:
            rows = cursor.fetchall() if cursor.description else []
        except mysql.connector.Error as e:
            raise _failed(query, QueryError.FETCH, e) from e

        columns = [d[0] for d in cursor.description or []]
        logger.debug(f"[QUERY] `{query}' returned {len(rows)} row(s)")
        return QueryResult(query=query, columns=columns, rows=[tuple(r) for r in rows])
    finally:
        try:
            cursor.close()
        except mysql.connector.Error as e:
            logger.debug(f"[QUERY] Failed to release cursor for `{query}': {e}")


def _failed(query: str, reason: str, error: Exception) -> QueryError:
    detail = getattr(error, "msg", None) or str(error)
    if reason == QueryError.REJECTED:
        message = f"Failed to execute query: {detail}"
    else:
        message = f"Failed to store query result: {detail}"
    logger.error(f"[QUERY] {message}")
    logger.info(f"[QUERY] SQL query was: {query}")
    return QueryError(message, query, reason)

