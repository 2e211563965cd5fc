"""
Document filters and sort specs as SQL over the JSON body column.

find_many pushes its conditions, ordering and limit into the query with these
helpers. Paths are dotted object paths. Equality also matches when the value
at the path is an array holding the operand, so {"students": email} selects
classes whose student set holds the email. Paths are not fanned out across
arrays of objects here; {"assignments._id": ...} belongs in update_if_match.

SQLite and PostgreSQL spell JSON access differently, so each element below
has one compilation per dialect.
"""

import json
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, false, literal, not_, or_
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.functions import FunctionElement
from sqlalchemy.types import Boolean

SortSpec = Sequence[Tuple[str, int]]

_SEGMENT = re.compile(r"^[A-Za-z0-9_]+$")
_SCALARS = (str, int, float, bool)


def _parts(path: str) -> Tuple[str, ...]:
    parts = tuple(path.split("."))
    for part in parts:
        if not _SEGMENT.match(part):
            raise ValueError(f"Unsupported query path: {path!r}")
    return parts


def _scalar(value: Any, path: str) -> Any:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, _SCALARS):
        raise ValueError(f"Only scalar operands can be queried, got {type(value).__name__} for {path!r}")
    return value


class _JsonPathElement(FunctionElement):
    # Path segments and operands live on the element, not in its clauses, so
    # none of these may be cached; each subclass repeats inherit_cache = False.
    inherit_cache = False

    def __init__(self, column: ColumnElement, parts: Tuple[str, ...], **options: Any) -> None:
        self.parts = parts
        for name, value in options.items():
            setattr(self, name, value)
        super().__init__(column)


class json_contains(_JsonPathElement):
    """Value at the path equals the operand, or is an array holding it."""

    type = Boolean()
    name = "json_contains"
    inherit_cache = False


class json_exists(_JsonPathElement):
    type = Boolean()
    name = "json_exists"
    inherit_cache = False


class json_value(_JsonPathElement):
    """Value at the path; `kind` is "number", "text" or None for the raw JSON value."""

    name = "json_value"
    inherit_cache = False


def _column_sql(element: _JsonPathElement, compiler, **kw) -> str:
    return compiler.process(list(element.clauses)[0], **kw)


def _sqlite_path(parts: Tuple[str, ...]) -> str:
    return "'$" + "".join(f"[{p}]" if p.isdigit() else f'."{p}"' for p in parts) + "'"


def _pg_path(parts: Tuple[str, ...]) -> str:
    return "'{" + ",".join(parts) + "}'"


@compiles(json_contains, "sqlite")
def _contains_sqlite(element, compiler, **kw):
    # json_each over a scalar yields the scalar itself
    return "EXISTS (SELECT 1 FROM json_each(%s, %s) WHERE json_each.value = %s)" % (
        _column_sql(element, compiler, **kw),
        _sqlite_path(element.parts),
        compiler.process(literal(element.operand), **kw),
    )


@compiles(json_contains, "postgresql")
def _contains_pg(element, compiler, **kw):
    # jsonb @> is true for equal scalars and for arrays holding the scalar
    return "COALESCE((%s #> %s) @> CAST(%s AS JSONB), false)" % (
        _column_sql(element, compiler, **kw),
        _pg_path(element.parts),
        compiler.process(literal(json.dumps(element.operand)), **kw),
    )


@compiles(json_exists, "sqlite")
def _exists_sqlite(element, compiler, **kw):
    return "json_type(%s, %s) IS NOT NULL" % (_column_sql(element, compiler, **kw), _sqlite_path(element.parts))


@compiles(json_exists, "postgresql")
def _exists_pg(element, compiler, **kw):
    return "(%s #> %s) IS NOT NULL" % (_column_sql(element, compiler, **kw), _pg_path(element.parts))


@compiles(json_value, "sqlite")
def _value_sqlite(element, compiler, **kw):
    return "json_extract(%s, %s)" % (_column_sql(element, compiler, **kw), _sqlite_path(element.parts))


@compiles(json_value, "postgresql")
def _value_pg(element, compiler, **kw):
    column = _column_sql(element, compiler, **kw)
    path = _pg_path(element.parts)
    if element.kind == "number":
        return "CASE WHEN jsonb_typeof(%s #> %s) = 'number' THEN CAST(%s #>> %s AS NUMERIC) END" % (
            column, path, column, path,
        )
    if element.kind == "text":
        return "(%s #>> %s)" % (column, path)
    return "(%s #> %s)" % (column, path)


def _contains(column: ColumnElement, parts: Tuple[str, ...], operand: Any, path: str) -> ColumnElement:
    return json_contains(column, parts, operand=_scalar(operand, path))


def _any_of(column: ColumnElement, parts: Tuple[str, ...], operands: Any, path: str) -> ColumnElement:
    if not isinstance(operands, (list, tuple, set)):
        raise ValueError(f"$in / $nin on {path!r} needs a list")
    return or_(false(), *[_contains(column, parts, v, path) for v in operands])


def _range(column: ColumnElement, parts: Tuple[str, ...], op: str, operand: Any, path: str) -> ColumnElement:
    operand = _scalar(operand, path)
    kind = "text" if isinstance(operand, str) else "number"
    value = json_value(column, parts, kind=kind)
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    if op == "$lt":
        return value < operand
    return value <= operand


def _condition(column: ColumnElement, path: str, condition: Any) -> ColumnElement:
    parts = _parts(path)
    if not (isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition)):
        return _contains(column, parts, condition, path)
    clauses = []
    for op, operand in condition.items():
        if op == "$eq":
            clauses.append(_contains(column, parts, operand, path))
        elif op == "$ne":
            clauses.append(not_(_contains(column, parts, operand, path)))
        elif op == "$in":
            clauses.append(_any_of(column, parts, operand, path))
        elif op == "$nin":
            clauses.append(not_(_any_of(column, parts, operand, path)))
        elif op == "$exists":
            exists = json_exists(column, parts)
            clauses.append(exists if operand else not_(exists))
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            clauses.append(_range(column, parts, op, operand, path))
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return and_(*clauses)


def filter_clauses(column: ColumnElement, filter: Optional[Dict[str, Any]]) -> List[ColumnElement]:
    """WHERE clauses for a document filter; an empty filter yields none."""
    return [_condition(column, path, condition) for path, condition in (filter or {}).items()]


def sort_clauses(column: ColumnElement, sort: Optional[SortSpec]) -> List[ColumnElement]:
    """ORDER BY clauses; direction 1 ascending, -1 descending. Missing values sort lowest."""
    clauses = []
    for path, direction in sort or ():
        value = json_value(column, _parts(path), kind=None)
        clauses.append(value.desc().nulls_last() if direction < 0 else value.asc().nulls_first())
    return clauses
