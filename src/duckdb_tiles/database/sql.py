"""
SQL identifier and literal quoting.

Table, schema, column and index names cannot be bound as query parameters,
so they are always passed through these helpers before they reach query
text. Numeric values never are: they travel as ``?`` parameters.
"""

from typing import Optional

from ..exceptions import QueryError


def quote_identifier(name: str) -> str:
    """
    Quote a SQL identifier, doubling any embedded double quotes.

    Raises:
        QueryError: If the name is empty, not a string, or contains NUL
    """
    if not isinstance(name, str) or not name:
        raise QueryError(f"Invalid SQL identifier: {name!r}")
    if "\x00" in name:
        raise QueryError("SQL identifier contains a NUL character")
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a SQL string literal, doubling any embedded single quotes."""
    if not isinstance(value, str):
        raise QueryError(f"Invalid SQL literal: {value!r}")
    if "\x00" in value:
        raise QueryError("SQL literal contains a NUL character")
    return "'" + value.replace("'", "''") + "'"


def qualified_name(name: str, schema: Optional[str] = None) -> str:
    """Quote an optionally schema-qualified table or index name."""
    if schema:
        return f"{quote_identifier(schema)}.{quote_identifier(name)}"
    return quote_identifier(name)
