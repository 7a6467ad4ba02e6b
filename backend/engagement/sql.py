"""Day-bucket SQL constructs that compile on both SQLite and PostgreSQL."""
from __future__ import annotations

from sqlalchemy import Date, literal_column
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement


class day_bucket(FunctionElement):
    """UTC calendar date of a timestamp.

    The column must hold naive UTC values (`timestamp without time zone` on
    PostgreSQL). A `timestamptz` column would be bucketed in the session time
    zone instead.
    """

    type = Date()
    name = "day_bucket"
    inherit_cache = True


class day_add(FunctionElement):
    """A day bucket shifted by a whole number of days."""

    type = Date()
    name = "day_add"
    inherit_cache = True

    def __init__(self, expr, days: int) -> None:
        super().__init__(expr, literal_column(str(int(days))))


def _split_day_add(element):
    expr, days = list(element.clauses)
    return expr, int(days.name)


@compiles(day_bucket)
def _compile_day_bucket(element, compiler, **kw):
    return "CAST(%s AS DATE)" % compiler.process(element.clauses, **kw)


@compiles(day_bucket, "sqlite")
def _compile_day_bucket_sqlite(element, compiler, **kw):
    return "date(%s)" % compiler.process(element.clauses, **kw)


@compiles(day_add)
def _compile_day_add(element, compiler, **kw):
    expr, days = _split_day_add(element)
    return "(%s + %d)" % (compiler.process(expr, **kw), days)


@compiles(day_add, "sqlite")
def _compile_day_add_sqlite(element, compiler, **kw):
    expr, days = _split_day_add(element)
    return "date(%s, '%+d days')" % (compiler.process(expr, **kw), days)
