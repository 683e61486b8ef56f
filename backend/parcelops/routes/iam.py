from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import create_access_token
from sqlalchemy import select, func
from parcelops import get_db
from parcelops.models.authz import User
from parcelops.constants.permissions import ALL_ROLES, PERMISSION_CATALOG, ROLE_ADMIN, ROLE_CUSTOMER
from parcelops.services.authorization import (
    Permission,
    default_permissions,
    is_known_permission,
    normalize_permissions,
    role_profile_json,
    toggle_permission,
    visible_sections,
)
from parcelops.services.session import resolve_actor, load_user_profile
from parcelops.services.audit import user_activity
from parcelops.services import analytics
from parcelops.decorators.auth import require_auth, require_permission, current_actor
from parcelops.decorators.audit import audit_log
from parcelops.utils.filters import apply_filters
from parcelops.utils.listing import apply_pagination, cached_list, make_cached_item_response
from parcelops.utils.sorting import apply_multi_sort
from parcelops.utils.validation import require_fields, validate_choice
from parcelops.time_utils import to_utc_z, utcnow

iam_bp = Blueprint('iam', __name__)


def _user_json(u: User):
    return {
        'id': u.id,
        'name': u.name,
        'email': u.email,
        'phone': u.phone,
        'role': u.role,
        'permissions': list(u.permissions or []),
        'is_active': bool(u.is_active),
        'created_at': to_utc_z(u.created_at),
        'last_login': to_utc_z(u.last_login),
        'updated_at': to_utc_z(u.updated_at),
    }


def _get_user_or_404(user_id: int) -> User:
    u = get_db().execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not u:
        abort(404)
    return u


def _parse_permissions(raw) -> list:
    if not isinstance(raw, list):
        abort(400, description='permissions must be a list')
    perms = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get('resource') or not entry.get('action'):
            abort(400, description='each permission needs resource and action')
        if not is_known_permission(entry['resource'], entry['action']):
            abort(400, description=f"Unknown permission {entry['resource']}:{entry['action']}")
        perms.append(Permission.from_dict(entry))
    return normalize_permissions(perms)


def _store_permissions(u: User, perms) -> None:
    u.permissions = [p.to_dict() for p in perms]


def _prefetch_user(user_id: int):
    u = get_db().execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    return _user_json(u) if u else {}


# --- Authentication ---

@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.verify_password(password):
        abort(401, description='invalid credentials')
    if not user.is_active:
        abort(403, description='account disabled')
    actor = resolve_actor(
        user.id,
        user.email,
        load_user_profile,
        timeout=current_app.config['SESSION_LOOKUP_TIMEOUT'],
        fallback_role=current_app.config['SESSION_FALLBACK_ROLE'],
    )
    user.last_login = utcnow()
    session.commit()
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=actor.to_claims())
    return {'access_token': token, 'user': _user_json(user), 'role': actor.role}


@iam_bp.post('/auth/signup')
@audit_log('USER.SIGNUP', entity='User', entity_id_key='id', meta_keys=['email', 'role'])
def signup():
    data = request.json or {}
    require_fields(data, 'name', 'email', 'password')
    session = get_db()
    if session.execute(select(User).where(User.email == data['email'])).scalar_one_or_none():
        abort(400, description='email already registered')
    # the first account of an empty system bootstraps the administrator
    has_users = session.execute(select(func.count(User.id))).scalar_one() > 0
    role = ROLE_CUSTOMER if has_users else ROLE_ADMIN
    u = User(name=data['name'], email=data['email'], phone=data.get('phone'), role=role, password_hash='')
    u.set_password(data['password'])
    _store_permissions(u, default_permissions(role))
    session.add(u)
    session.commit()
    current_app.logger.info('signup %s as %s', u.email, role)
    return _user_json(u), 201


@iam_bp.get('/auth/me')
@require_auth
def me():
    actor = current_actor()
    return {
        'id': actor.id,
        'name': actor.name,
        'email': actor.email,
        'role': actor.role,
        'permissions': [p.to_dict() for p in actor.permissions],
        'is_active': actor.is_active,
        'sections': visible_sections(actor.role),
    }


# --- Users ---

USER_FILTERS = {
    'role': {'op': lambda q, v: q.filter(User.role == v), 'validate': lambda v: v in ALL_ROLES},
    'is_active': {'coerce': lambda v: str(v).lower() in ('1', 'true', 'yes'), 'op': lambda q, v: q.filter(User.is_active == v)},
    'q': {'op': lambda q, v: q.filter(User.name.ilike(f'%{v}%') | User.email.ilike(f'%{v}%'))},
}
USER_SORTS = {
    'name': User.name,
    'email': User.email,
    'role': User.role,
    'created_at': User.created_at,
    'last_login': User.last_login,
    'id': User.id,
}


@iam_bp.route('/users', methods=['GET', 'HEAD'])
@require_permission('users', 'read')
def list_users():
    q = apply_filters(get_db().query(User), USER_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), USER_SORTS, User.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((u.updated_at for u in rows if u.updated_at), default=None)
    return cached_list([_user_json(u) for u in rows], total, limit, offset, latest_ts)


@iam_bp.post('/users')
@require_permission('users', 'create')
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['email', 'role'])
def create_user():
    data = request.json or {}
    require_fields(data, 'name', 'email', 'password')
    role = validate_choice(data.get('role', ROLE_CUSTOMER), ALL_ROLES, 'role')
    session = get_db()
    if session.execute(select(User).where(User.email == data['email'])).scalar_one_or_none():
        abort(400, description='email already registered')
    u = User(name=data['name'], email=data['email'], phone=data.get('phone'), role=role,
             is_active=bool(data.get('is_active', True)), password_hash='')
    u.set_password(data['password'])
    if 'permissions' in data:
        _store_permissions(u, _parse_permissions(data['permissions']))
    else:
        _store_permissions(u, default_permissions(role))
    session.add(u)
    session.commit()
    return _user_json(u), 201


@iam_bp.get('/users/stats')
@require_permission('users', 'read')
def users_stats():
    users = get_db().execute(select(User)).scalars().all()
    return analytics.user_stats(users, utcnow())


@iam_bp.route('/users/<int:user_id>', methods=['GET', 'HEAD'])
@require_permission('users', 'read')
def get_user(user_id: int):
    u = _get_user_or_404(user_id)
    return make_cached_item_response(_user_json(u), u.updated_at)


@iam_bp.put('/users/<int:user_id>')
@require_permission('users', 'update')
@audit_log(
    'USER.UPDATE',
    entity='User',
    entity_id_key='id',
    diff_keys=['name', 'email', 'phone'],
    pre_fetch=lambda a, kw: _prefetch_user(kw.get('user_id')),
)
def update_user(user_id: int):
    session = get_db()
    u = _get_user_or_404(user_id)
    data = request.json or {}
    if 'name' in data:
        if not data['name']:
            abort(400, description='name cannot be empty')
        u.name = data['name']
    if 'email' in data:
        if not data['email']:
            abort(400, description='email cannot be empty')
        clash = session.execute(select(User).where(User.email == data['email'], User.id != u.id)).scalar_one_or_none()
        if clash:
            abort(400, description='email already registered')
        u.email = data['email']
    if 'phone' in data:
        u.phone = data['phone']
    if data.get('password'):
        u.set_password(data['password'])
    session.commit()
    return _user_json(u)


@iam_bp.put('/users/<int:user_id>/role')
@require_permission('users', 'update')
@audit_log(
    'USER.ROLE.SET',
    entity='User',
    entity_id_key='id',
    meta_keys=['role'],
    diff_keys=['role'],
    pre_fetch=lambda a, kw: _prefetch_user(kw.get('user_id')),
)
def set_user_role(user_id: int):
    data = request.json or {}
    role = validate_choice(data.get('role'), ALL_ROLES, 'role')
    u = _get_user_or_404(user_id)
    u.role = role
    # role assignment keeps the custom permission list unless defaults are requested
    if data.get('apply_defaults'):
        _store_permissions(u, default_permissions(role))
    get_db().commit()
    current_app.logger.info('user %s role set to %s', u.id, role)
    return _user_json(u)


@iam_bp.put('/users/<int:user_id>/status')
@require_permission('users', 'update')
@audit_log('USER.STATUS.SET', entity='User', entity_id_key='id', meta_keys=['is_active'])
def set_user_status(user_id: int):
    data = request.json or {}
    if not isinstance(data.get('is_active'), bool):
        abort(400, description='is_active must be boolean')
    actor = current_actor()
    if not data['is_active'] and str(actor.id) == str(user_id):
        abort(400, description='cannot deactivate your own account')
    u = _get_user_or_404(user_id)
    u.is_active = data['is_active']
    get_db().commit()
    return _user_json(u)


@iam_bp.put('/users/<int:user_id>/permissions')
@require_permission('users', 'update')
@audit_log(
    'USER.PERM.REPLACE',
    entity='User',
    entity_id_key='id',
    meta_builder=lambda data, rv, a, kw: {'count': len(data.get('permissions', []))},
)
def replace_user_permissions(user_id: int):
    data = request.json or {}
    perms = _parse_permissions(data.get('permissions'))
    u = _get_user_or_404(user_id)
    _store_permissions(u, perms)
    get_db().commit()
    return _user_json(u)


@iam_bp.post('/users/<int:user_id>/permissions/toggle')
@require_permission('users', 'update')
@audit_log(
    'USER.PERM.TOGGLE',
    entity='User',
    entity_id_key='id',
    meta_builder=lambda data, rv, a, kw: {'resource': (request.json or {}).get('resource'), 'action': (request.json or {}).get('action')},
)
def toggle_user_permission(user_id: int):
    data = request.json or {}
    require_fields(data, 'resource', 'action')
    if not is_known_permission(data['resource'], data['action']):
        abort(400, description=f"Unknown permission {data['resource']}:{data['action']}")
    u = _get_user_or_404(user_id)
    current = [Permission.from_dict(p) for p in (u.permissions or [])]
    _store_permissions(u, toggle_permission(current, data['resource'], data['action']))
    get_db().commit()
    return _user_json(u)


@iam_bp.post('/users/<int:user_id>/permissions/defaults')
@require_permission('users', 'update')
@audit_log('USER.PERM.DEFAULTS', entity='User', entity_id_key='id', meta_keys=['role'])
def apply_default_permissions(user_id: int):
    u = _get_user_or_404(user_id)
    _store_permissions(u, default_permissions(u.role))
    get_db().commit()
    return _user_json(u)


@iam_bp.get('/users/<int:user_id>/activity')
@require_permission('users', 'read')
def get_user_activity(user_id: int):
    _get_user_or_404(user_id)
    rows = user_activity(user_id)
    return {'user_id': user_id, 'data': rows}


# --- Reference data ---

@iam_bp.get('/roles')
@require_permission('users', 'read')
def list_roles():
    return {'data': [role_profile_json(r) for r in ALL_ROLES]}


@iam_bp.get('/permissions')
@require_permission('users', 'read')
def list_permissions():
    data = []
    for resource, actions in PERMISSION_CATALOG.items():
        for action, name, description in actions:
            row = Permission(resource, action, name).to_dict()
            row['description'] = description
            data.append(row)
    return {'data': data}
