from __future__ import annotations
from typing import Any, Dict
from flask import abort


def _clean(name: str, meta: Dict[str, Any], raw: Any):
    val = raw
    if 'coerce' in meta:
        try:
            val = meta['coerce'](raw)
        except (TypeError, ValueError):
            abort(400, description=f'{name} invalid')
    if 'validate' in meta and not meta['validate'](val):
        abort(400, description=f'{name} invalid')
    return val


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """Generic filter builder for SQLAlchemy queries.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable (optional), 'validate': callable (optional) } }
    """
    for name, meta in specs.items():
        if params.get(name) in (None, ''):
            continue
        query = meta['op'](query, _clean(name, meta, params[name]))
    return query


def filter_records(rows, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """Filter derived rows; each filter's 'match' is callable(row, value)->bool."""
    out = list(rows)
    for name, meta in specs.items():
        if params.get(name) in (None, ''):
            continue
        val = _clean(name, meta, params[name])
        out = [r for r in out if meta['match'](r, val)]
    return out
