from __future__ import annotations
from typing import Any, Dict, List, Optional
from flask import g, has_request_context
from sqlalchemy import select
from parcelops import get_db
from parcelops.models.audit import AuditLog
from parcelops.time_utils import to_utc_z


def _current_actor():
    if not has_request_context():
        return None
    auth = getattr(g, 'auth', None)
    return auth.actor if auth is not None else None


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
    """Stage an audit entry in the current DB session.

    Parameters:
      action: short action code e.g. USER.ROLE.SET, ORDER.SHIP, PAYMENT.RECORD
      entity: optional entity name (User, Order, Payment)
      entity_id: optional primary key string
      meta: JSON-safe dictionary (shallow copied)

    The acting user comes from the request's resolved AuthSession (g.auth).
    Nothing is committed here; the caller's transaction decides durability.
    """
    session = get_db()
    actor = _current_actor()
    actor_id = 0
    if actor is not None:
        try:
            actor_id = int(actor.id)
        except (TypeError, ValueError):
            actor_id = 0
    log = AuditLog(
        actor_user_id=actor_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        role_snapshot=actor.role if actor is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    return log


def user_activity(user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent audit entries performed by or on a user."""
    session = get_db()
    rows = session.execute(
        select(AuditLog)
        .where((AuditLog.actor_user_id == user_id) | ((AuditLog.entity == 'User') & (AuditLog.entity_id == str(user_id))))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    ).scalars().all()
    return [
        {
            'id': a.id,
            'action': a.action,
            'entity': a.entity,
            'entity_id': a.entity_id,
            'actor_user_id': a.actor_user_id,
            'role': a.role_snapshot,
            'meta': a.meta or {},
            'created_at': to_utc_z(a.created_at),
        }
        for a in rows
    ]
