from functools import wraps
from typing import Optional
from flask import abort, g, request
from flask_jwt_extended import verify_jwt_in_request, get_jwt, get_jwt_identity
from parcelops import get_db
from parcelops.models.authz import User
from parcelops.services.authorization import Actor, AuthSession


def _assert_account_active(actor: Actor):
    """Tokens outlive a deactivation; the user row is the source of truth for is_active."""
    if not actor.is_active:
        abort(403, description='account disabled')
    try:
        user_id = int(actor.id)
    except (TypeError, ValueError):
        return
    user = get_db().get(User, user_id)
    # users are never hard-deleted, so only an existing inactive row blocks
    if user is not None and not user.is_active:
        abort(403, description='account disabled')


def _load_session() -> AuthSession:
    verify_jwt_in_request()
    header = request.headers.get('Authorization', '')
    token = header[7:] if header.startswith('Bearer ') else None
    actor = Actor.from_claims(get_jwt_identity(), get_jwt())
    _assert_account_active(actor)
    g.auth = AuthSession(actor, token)
    return g.auth


def current_actor() -> Optional[Actor]:
    auth = getattr(g, 'auth', None)
    return auth.actor if auth is not None else None


def require_auth(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _load_session()
        return fn(*args, **kwargs)
    return wrapper


def require_permission(resource: str, action: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            auth = _load_session()
            if not auth.can(resource, action):
                abort(403, description=f'Missing permission {resource}:{action}')
            return fn(*args, **kwargs)
        return wrapper
    return outer
