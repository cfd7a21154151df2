"""Wire grammar for row filters, shared by the query builder and the server.

A filter travels as one query-string pair, ``<column>=<operator>.<value>``;
``in`` carries a parenthesized list, ``<column>=in.(a,b,c)``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"


def format_value(value: Any) -> str:
    """Render a Python value the way it is written on the wire."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@dataclass(frozen=True)
class FilterExpression:
    column: str
    operator: Operator
    value: str | tuple[str, ...]

    @classmethod
    def build(cls, column: str, operator: Operator | str, value: Any) -> "FilterExpression":
        operator = Operator(operator)
        if operator is Operator.IN:
            values = tuple(format_value(v) for v in value)
            for v in values:
                if "," in v or "(" in v or ")" in v:
                    raise ValueError(f"in() values cannot contain commas or parentheses: {v!r}")
            return cls(column, operator, values)
        return cls(column, operator, format_value(value))

    def to_param(self) -> tuple[str, str]:
        if self.operator is Operator.IN:
            return self.column, f"in.({','.join(self.value)})"
        return self.column, f"{self.operator.value}.{self.value}"

    @classmethod
    def from_param(cls, column: str, raw: str, strict: bool = False) -> "FilterExpression | None":
        """Decode one query-string pair.

        Returns None when ``raw`` carries no operator prefix. Unknown
        operators are read as ``eq`` over the whole raw value, or rejected
        with ValueError when ``strict`` is set.
        """
        if "." not in raw:
            return None
        prefix, _, rest = raw.partition(".")
        try:
            operator = Operator(prefix)
        except ValueError:
            if strict:
                raise ValueError(f"Unknown filter operator '{prefix}' for column '{column}'")
            return cls(column, Operator.EQ, raw)
        if operator is Operator.IN:
            inner = rest
            if inner.startswith("(") and inner.endswith(")"):
                inner = inner[1:-1]
            values = tuple(v for v in inner.split(",") if v != "")
            return cls(column, operator, values)
        return cls(column, operator, rest)
