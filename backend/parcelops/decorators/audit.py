from __future__ import annotations
"""Audit logging decorator for mutating route handlers.

Usage:

@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['email', 'role'])
def create_user():
    ... return {'id': user.id, 'email': user.email, 'role': user.role}, 201

@audit_log('ORDER.SHIP', entity='Order', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')))
def ship_order(order_id): ...

Parameters:
  action: audit action code (e.g. USER.ROLE.SET)
  entity: optional entity label (User, Order, Payment)
  entity_id_key: key in the returned JSON object whose value becomes entity_id
  entity_id_arg: view keyword argument used for entity_id when the key is absent
  meta_keys: keys projected from the returned JSON into meta
  meta_builder: callable(data, rv, args, kwargs) -> dict; overrides meta_keys
  diff_keys / pre_fetch: record {'changes': {key: {before, after}}} against a
    snapshot taken before the view runs

Error responses (status >= 400) are not audited.
"""

from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from flask import current_app

from parcelops.services.audit import add_audit
from parcelops import get_db


def _extract_payload(rv: Any):
    """Return (data, status) from a Flask view return value."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def _diff(before: Dict[str, Any], after: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    changes = {}
    for k in keys:
        if k in before and k in after and before[k] != after[k]:
            changes[k] = {'before': before[k], 'after': after[k]}
    return changes


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 400:
                return rv
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            else:
                meta = {}
            if before:
                changes = _diff(before, data, diff_keys)
                if changes:
                    meta = dict(meta or {}, changes=changes)
            add_audit(action, entity, entity_id, meta)
            get_db().commit()
            current_app.logger.debug('audit %s %s %s', action, entity, entity_id)
            return rv
        return wrapper
    return outer
