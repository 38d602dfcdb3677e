"""
SQL literal and identifier rendering for generated statements.

Filter clauses are handed around as rendered SQL text, so every free-text
value that ends up in one goes through escape_literal(), which honours
the connection's standard_conforming_strings setting. Numeric and boolean
values are rendered directly after type validation.
"""

import math
import re
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from src.vectorstore.exceptions import EscapeStringError

# NAMEDATALEN - 1; longer identifiers are silently truncated by Postgres
MAX_IDENTIFIER_BYTES = 63

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")


class SqlEscaper:
    """
    Connection-aware escaper.

    Usage:
        async with db.acquire() as conn:
            escaper = SqlEscaper.for_connection(conn)
            where = f"name IN {escaper.prepare_string_array(['a', 'b'])}"
    """

    def __init__(self, standard_conforming_strings: bool = True, client_encoding: str = "UTF8"):
        self.standard_conforming_strings = standard_conforming_strings
        self.client_encoding = client_encoding

    @classmethod
    def for_connection(cls, conn: Any) -> "SqlEscaper":
        """Build an escaper from the server settings reported by an asyncpg connection."""
        settings = conn.get_settings()
        scs = getattr(settings, "standard_conforming_strings", "on")
        encoding = getattr(settings, "client_encoding", "UTF8")
        return cls(
            standard_conforming_strings=str(scs).lower() == "on",
            client_encoding=str(encoding),
        )

    def escape_identifier(self, name: str) -> str:
        """
        Quote an identifier (table or column name).

        Raises:
            EscapeStringError: For empty, NUL-containing or over-long names
        """
        if not isinstance(name, str) or not name:
            raise EscapeStringError(f"Invalid identifier: {name!r}")
        if "\x00" in name:
            raise EscapeStringError("Identifier contains a NUL byte")
        if len(name.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
            raise EscapeStringError(
                f"Identifier {name!r} exceeds {MAX_IDENTIFIER_BYTES} bytes"
            )
        return '"' + name.replace('"', '""') + '"'

    def escape_literal(self, value: Any) -> str:
        """
        Render a value as a quoted string literal.

        Raises:
            EscapeStringError: If the text contains a NUL byte
        """
        text = str(value)
        if "\x00" in text:
            raise EscapeStringError("String literal contains a NUL byte")
        quoted = text.replace("'", "''")
        if not self.standard_conforming_strings and "\\" in quoted:
            return "E'" + quoted.replace("\\", "\\\\") + "'"
        return "'" + quoted + "'"

    def prepare_string_array(self, values: Iterable[Any], constructor: bool = False) -> str:
        """
        Render free-text values as ('a', 'b') or ARRAY['a', 'b'].

        Args:
            values: Values to render, each escaped as a literal
            constructor: Render an ARRAY[...] constructor instead of a list
        """
        return _wrap([self.escape_literal(v) for v in values], constructor)

    @staticmethod
    def prepare_scalar_array(values: Iterable[Any], constructor: bool = False) -> str:
        """
        Render numeric or boolean values as (1, 2) or ARRAY[1, 2].

        Raises:
            EscapeStringError: For values that are neither numbers nor booleans
        """
        return _wrap([_render_scalar(v) for v in values], constructor)


def _wrap(items: list[str], constructor: bool) -> str:
    if constructor:
        return "ARRAY[" + ", ".join(items) + "]"
    return "(" + ", ".join(items) + ")"


def _render_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EscapeStringError(f"Non-finite number cannot be rendered: {value}")
        return repr(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise EscapeStringError(f"Non-finite number cannot be rendered: {value}")
        return str(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        return value.strip()
    raise EscapeStringError(
        f"Value {value!r} is not numeric or boolean; use the string path"
    )
