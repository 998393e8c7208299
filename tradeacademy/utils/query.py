"""
List query helpers.

Turns request arguments into a filtered, sorted and paginated SQLAlchemy
query:

    ?page=2&limit=20&sort=-created_at,title&fields=title,level&price[gte]=10&level=beginner

Unknown columns are rejected with a validation error rather than ignored.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from flask import current_app
from sqlalchemy import Boolean, DateTime, Float, Integer, Numeric, Uuid, Enum as SQLEnum

from tradeacademy.utils.exceptions import ValidationError

RESERVED_ARGS = {"page", "limit", "sort", "fields"}

OPERATORS = {
    "gte": lambda column, value: column >= value,
    "gt": lambda column, value: column > value,
    "lte": lambda column, value: column <= value,
    "lt": lambda column, value: column < value,
    "ne": lambda column, value: column != value,
}

_FILTER_KEY = re.compile(r"^(?P<field>\w+)(\[(?P<op>\w+)\])?$")


def _coerce(column, raw: str) -> Any:
    column_type = column.type
    try:
        if isinstance(column_type, SQLEnum) and column_type.enum_class is not None:
            return column_type.enum_class(raw)
        if isinstance(column_type, Boolean):
            if raw.lower() not in ("true", "false", "1", "0"):
                raise ValueError(raw)
            return raw.lower() in ("true", "1")
        if isinstance(column_type, Integer):
            return int(raw)
        if isinstance(column_type, Numeric) and not isinstance(column_type, Float):
            return Decimal(raw)
        if isinstance(column_type, Float):
            return float(raw)
        if isinstance(column_type, DateTime):
            return datetime.fromisoformat(raw)
        if isinstance(column_type, Uuid):
            return UUID(raw)
    except (ValueError, InvalidOperation):
        raise ValidationError(
            f"Invalid value for {column.key}: {raw}", field=column.key
        )
    return raw


def _column(model, name: str, private: Iterable[str] = ()):
    column = model.__table__.columns.get(name)
    if column is None or name in private:
        raise ValidationError(f"Unknown field: {name}", field=name)
    return getattr(model, name)


def parse_pagination(args) -> Tuple[int, int]:
    default_limit = current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except ValueError:
        raise ValidationError("page and limit must be integers")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    return page, min(limit, max_limit)


def parse_fields(args) -> Optional[List[str]]:
    fields = args.get("fields")
    if not fields:
        return None
    return [f.strip() for f in fields.split(",") if f.strip()]


def apply_list_args(query, model, args, default_sort: str = "-created_at"):
    """Apply column filters and sorting from ``args`` to ``query``."""
    private = getattr(model, "__private__", ())

    for key, raw in args.items():
        if key in RESERVED_ARGS:
            continue
        match = _FILTER_KEY.match(key)
        if not match:
            raise ValidationError(f"Invalid filter: {key}", field=key)
        column = _column(model, match.group("field"), private)
        op = match.group("op")
        value = _coerce(column.property.columns[0], raw)
        if op is None:
            query = query.filter(column == value)
        elif op in OPERATORS:
            query = query.filter(OPERATORS[op](column, value))
        else:
            raise ValidationError(
                f"Unsupported operator: {op}",
                field=key,
                details={"allowed": sorted(OPERATORS)},
            )

    for name in (args.get("sort") or default_sort).split(","):
        name = name.strip()
        if not name:
            continue
        descending = name.startswith("-")
        column = _column(model, name.lstrip("-"), private)
        query = query.order_by(column.desc() if descending else column.asc())

    return query


def paginate(query, model, args, default_sort: str = "-created_at",
             serialize=None) -> Dict[str, Any]:
    """
    Run a list query and build the standard list response body.

    ``serialize`` receives each row and the requested field list; it defaults
    to ``row.to_dict(fields)``.
    """
    page, limit = parse_pagination(args)
    fields = parse_fields(args)
    if fields:
        private = getattr(model, "__private__", ())
        for name in fields:
            _column(model, name, private)

    query = apply_list_args(query, model, args, default_sort)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()

    serialize = serialize or (lambda row, wanted: row.to_dict(wanted))
    return {
        "status": "success",
        "results": len(rows),
        "total": total,
        "page": page,
        "limit": limit,
        "data": [serialize(row, fields) for row in rows],
    }
