"""
TradeAcademy - API blueprints
"""

from typing import Any, Dict, Optional
from uuid import UUID

from flask import request
from marshmallow import Schema

from tradeacademy.utils.exceptions import ValidationError


def load_json(schema: Schema, partial: bool = False) -> Dict[str, Any]:
    """Parse the request body with ``schema``; a missing body counts as empty."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return schema.load(payload, partial=partial)


def success(data: Optional[Any] = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": "success"}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def apply_changes(instance, data: Dict[str, Any]) -> None:
    for key, value in data.items():
        setattr(instance, key, value)


def parse_uuid(value, field: str = "id") -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a valid id", field=field)


def int_arg(name: str, default: int, maximum: int) -> int:
    """Positive integer query parameter, capped at ``maximum``."""
    try:
        value = int(request.args.get(name, default))
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name)
    if value < 1:
        raise ValidationError(f"{name} must be positive", field=name)
    return min(value, maximum)
