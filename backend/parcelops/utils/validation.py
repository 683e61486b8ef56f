from __future__ import annotations
"""Request validation helpers.

Each helper returns the cleaned value (to enable inline usage) or aborts with
a 400 carrying a short field-level description.
"""
from datetime import datetime
from typing import Any, Iterable, Optional
from flask import abort

from parcelops.time_utils import parse_iso_datetime, utcnow


def validate_choice(value: Any, allowed: Iterable[str], field_name: str = 'status') -> str:
    if value not in tuple(allowed):
        abort(400, description=f"{field_name} invalid")
    return value


def require_fields(data: dict, *names: str) -> None:
    missing = [n for n in names if data.get(n) in (None, '')]
    if missing:
        abort(400, description=f"{', '.join(missing)} required")


def coerce_int(value: Any, field_name: str, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        abort(400, description=f'{field_name} must be int')
    try:
        out = int(value)
    except (TypeError, ValueError):
        abort(400, description=f'{field_name} must be int')
    if minimum is not None and out < minimum:
        abort(400, description=f'{field_name} must be >= {minimum}')
    return out


def coerce_datetime(value: Any, field_name: str) -> Optional[datetime]:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        abort(400, description=f'{field_name} must be ISO-8601')


def evaluation_clock(raw: Optional[str]) -> datetime:
    """`as_of` query value as the derivation clock; defaults to now."""
    return coerce_datetime(raw, 'as_of') or utcnow()

__all__ = ['validate_choice', 'require_fields', 'coerce_int', 'coerce_datetime', 'evaluation_clock']
