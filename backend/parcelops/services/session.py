"""Resolve verified credentials into an Actor.

The profile lookup runs on a worker thread with a bounded wait. A lookup that
times out, raises or finds nothing degrades to a synthesized actor carrying
the configured fallback role and that role's default permissions.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Optional

from flask import current_app
from sqlalchemy import select

from parcelops.constants.permissions import ROLE_CUSTOMER
from parcelops.services.authorization import Actor, Permission, default_permissions

DEFAULT_LOOKUP_TIMEOUT = 10.0

ProfileLoader = Callable[[Any], Optional[Dict[str, Any]]]


def fallback_actor(user_id: Any, email: str, role: str = ROLE_CUSTOMER) -> Actor:
    return Actor(
        id=user_id,
        name=(email or '').split('@')[0],
        email=email or '',
        role=role,
        permissions=tuple(default_permissions(role)),
        is_active=True,
    )


def _actor_from_profile(profile: Dict[str, Any]) -> Actor:
    return Actor(
        id=profile['id'],
        name=profile.get('name') or '',
        email=profile.get('email') or '',
        role=profile['role'],
        permissions=tuple(Permission.from_dict(p) for p in profile.get('permissions') or []),
        is_active=bool(profile.get('is_active', True)),
    )


def resolve_actor(user_id: Any, email: str, loader: ProfileLoader,
                  timeout: float = DEFAULT_LOOKUP_TIMEOUT, fallback_role: str = ROLE_CUSTOMER) -> Actor:
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(loader, user_id)
        try:
            profile = future.result(timeout=timeout)
        except FutureTimeout:
            current_app.logger.warning('profile lookup for user %s timed out after %ss; using %s fallback', user_id, timeout, fallback_role)
            return fallback_actor(user_id, email, fallback_role)
        except Exception as e:  # lookup failures degrade to the fallback actor
            current_app.logger.warning('profile lookup for user %s failed (%s); using %s fallback', user_id, e, fallback_role)
            return fallback_actor(user_id, email, fallback_role)
    finally:
        # do not block the request on a stuck lookup
        executor.shutdown(wait=False)
    if not profile:
        current_app.logger.warning('no profile for user %s; using %s fallback', user_id, fallback_role)
        return fallback_actor(user_id, email, fallback_role)
    return _actor_from_profile(profile)


def load_user_profile(user_id: Any) -> Optional[Dict[str, Any]]:
    """Default loader: read the user row on the worker thread's own scoped session."""
    from parcelops import SessionLocal
    from parcelops.models.authz import User
    session = SessionLocal()
    try:
        user = session.execute(select(User).where(User.id == int(user_id))).scalar_one_or_none()
        if user is None:
            return None
        return {
            'id': user.id,
            'name': user.name,
            'email': user.email,
            'role': user.role,
            'permissions': list(user.permissions or []),
            'is_active': user.is_active,
        }
    finally:
        SessionLocal.remove()


__all__ = ['resolve_actor', 'fallback_actor', 'load_user_profile', 'DEFAULT_LOOKUP_TIMEOUT']
