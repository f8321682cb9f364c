"""Translate criteria mappings into SQL predicates.

Criteria map a column to a literal (equality) or to a one-item mapping of
operator to operand::

    {"username": "bill"}                      username = ?
    {"age": {">=": 18}, "city": {"$in": ["Wareham", "Poole"]}}
    {"deleted_at": None}                      deleted_at IS NULL
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .backends.sqlite import quote_identifier

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

OPERATORS: Dict[str, str] = {
    "=": "=",
    "==": "=",
    "!=": "!=",
    "<>": "!=",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
    "LIKE": "LIKE",
    "GLOB": "GLOB",
    "IN": "IN",
    "NOT IN": "NOT IN",
    "IS": "IS",
    "IS NOT": "IS NOT",
    "$eq": "=",
    "$ne": "!=",
    "$lt": "<",
    "$lte": "<=",
    "$gt": ">",
    "$gte": ">=",
    "$in": "IN",
    "$nin": "NOT IN",
    "$like": "LIKE",
}


@dataclass
class Predicate:
    """A SQL predicate (without WHERE) and its parameters."""

    sql: str = ""
    params: List[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.sql)


def _check_identifier(name: str) -> None:
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid column name in criteria: {name!r}")


def _operator(name: Any) -> str:
    key = name if isinstance(name, str) and name.startswith("$") else str(name).upper()
    try:
        return OPERATORS[key]
    except KeyError:
        raise ValueError(f"Unknown criteria operator: {name!r}") from None


def _term(column: str, operator: str, operand: Any) -> Predicate:
    quoted = quote_identifier(column)
    if operator in ("IN", "NOT IN"):
        if isinstance(operand, (str, bytes)) or not isinstance(operand, Iterable):
            raise ValueError(f"Operator {operator} on {column} needs a list of values")
        values = list(operand)
        if not values:
            # IN () matches nothing, NOT IN () matches everything
            return Predicate("0" if operator == "IN" else "1")
        marks = ", ".join("?" for _ in values)
        return Predicate(f"{quoted} {operator} ({marks})", values)
    if operand is None:
        if operator in ("=", "IS"):
            return Predicate(f"{quoted} IS NULL")
        if operator in ("!=", "IS NOT"):
            return Predicate(f"{quoted} IS NOT NULL")
    return Predicate(f"{quoted} {operator} ?", [operand])


def to_predicate(criteria: Optional[Mapping[str, Any]]) -> Predicate:
    """Translate a criteria mapping into a predicate joined with AND.

    Raises:
        ValueError: On invalid column names, unknown operators or
            malformed operator mappings
    """
    predicate = Predicate()
    if not criteria:
        return predicate

    terms = []
    for column, condition in criteria.items():
        _check_identifier(column)
        if isinstance(condition, Mapping):
            if len(condition) != 1:
                raise ValueError(
                    f"Criteria for {column} must have exactly one operator, got {dict(condition)}"
                )
            name, operand = next(iter(condition.items()))
            term = _term(column, _operator(name), operand)
        else:
            term = _term(column, "=", condition)
        terms.append(term.sql)
        predicate.params.extend(term.params)

    predicate.sql = " AND ".join(terms)
    return predicate


def order_clause(
    order: Optional[str] = None,
    ascending: bool = False,
    descending: bool = False,
    limit: Optional[int] = None,
) -> str:
    """Render ORDER BY / LIMIT modifiers.

    Ascending is the default order; ``descending`` wins if both are set.

    Raises:
        ValueError: On an invalid column name or a negative limit
    """
    parts = []
    if order:
        _check_identifier(order)
        parts.append(f"ORDER BY {quote_identifier(order)}")
        if descending:
            parts.append("DESC")
        elif ascending:
            parts.append("ASC")
    if limit is not None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValueError(f"Limit must be a non-negative integer, got {limit!r}")
        parts.append(f"LIMIT {limit}")
    return " ".join(parts)
