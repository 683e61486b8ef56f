from __future__ import annotations
from typing import Any, Dict, List
from flask import abort


def _parse_sort(sort_expr: str | None):
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if token:
            yield token.startswith('-'), token.lstrip('-')


def apply_multi_sort(query, sort_expr: str | None, allowed: dict, tie_breaker):
    """Apply multi-field sort to a SQLAlchemy query.
    sort_expr: comma-separated tokens, each optionally prefixed with '-'.
    allowed: mapping of field key -> column object.
    tie_breaker: column appended for deterministic ordering.
    """
    clauses = []
    for desc, key in _parse_sort(sort_expr):
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)


def sort_records(rows: List[Dict[str, Any]], sort_expr: str | None, allowed: set, default: str) -> List[Dict[str, Any]]:
    """Same token grammar as apply_multi_sort, over derived (in-memory) rows.

    Applied right to left so the first token is the primary key; None sorts first.
    """
    tokens = list(_parse_sort(sort_expr)) or list(_parse_sort(default))
    for _, key in tokens:
        if key not in allowed:
            abort(400, description=f'Invalid sort field {key}')
    out = list(rows)
    for desc, key in reversed(tokens):
        out.sort(key=lambda r: (r.get(key) is not None, r.get(key)), reverse=desc)
    return out
