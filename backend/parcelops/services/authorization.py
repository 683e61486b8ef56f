"""Role / permission authorization model.

Pure helpers only: nothing here touches the database or the request context,
so callers (route decorators, tests) hand in the Actor explicitly.

    actor = Actor(id=1, name='Dee', email='d@example.com', role='dispatcher',
                  permissions=(Permission('orders', 'read'),))
    has_permission(actor, 'orders', 'read')   # True
    has_permission(None, 'orders', 'read')    # False (fail closed)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from parcelops.constants.permissions import (
    ACTIONS,
    ALL_ROLES,
    NAVIGATION_SECTIONS,
    PERMISSION_CATALOG,
    ROLE_ADMIN,
    ROLE_CAPABILITIES,
    WILDCARD,
    permission_name,
)


@dataclass(frozen=True)
class Permission:
    resource: str
    action: str
    name: Optional[str] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return f"{self.resource}-{self.action}"

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.key,
            'name': self.name or permission_name(self.resource, self.action),
            'resource': self.resource,
            'action': self.action,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Permission':
        return cls(resource=raw['resource'], action=raw['action'], name=raw.get('name'))


@dataclass(frozen=True)
class Actor:
    id: Any
    name: str
    email: str
    role: str
    permissions: Tuple[Permission, ...] = ()
    is_active: bool = True

    def to_claims(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'perms': [p.to_dict() for p in self.permissions],
            'is_active': self.is_active,
        }

    @classmethod
    def from_claims(cls, identity: Any, claims: Dict[str, Any]) -> 'Actor':
        return cls(
            id=identity,
            name=claims.get('name', ''),
            email=claims.get('email', ''),
            role=claims.get('role', ''),
            permissions=tuple(Permission.from_dict(p) for p in claims.get('perms', [])),
            is_active=bool(claims.get('is_active', True)),
        )

    @classmethod
    def from_user(cls, user) -> 'Actor':
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            permissions=tuple(Permission.from_dict(p) for p in (user.permissions or [])),
            is_active=bool(user.is_active),
        )


def has_permission(actor: Optional[Actor], resource: str, action: str) -> bool:
    if actor is None:
        return False
    if actor.role == ROLE_ADMIN:
        return True
    for perm in actor.permissions:
        # a wildcard resource still needs its action to match: ('*', 'read') grants read everywhere
        if perm.resource in (WILDCARD, resource) and perm.action in (WILDCARD, action):
            return True
    return False


@dataclass
class AuthSession:
    """Signed-in actor plus the bearer token it was resolved from."""
    actor: Optional[Actor]
    token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.actor is not None

    def can(self, resource: str, action: str) -> bool:
        return has_permission(self.actor, resource, action)


def default_permissions(role: str) -> List[Permission]:
    profile = ROLE_CAPABILITIES.get(role)
    if profile is None:
        raise ValueError(f'unknown role {role}')
    return [Permission(r, a, permission_name(r, a)) for r, a in profile.defaults]


def visible_sections(role: str) -> List[str]:
    """Navigation sections a role sees, derived from its default capability set."""
    profile = ROLE_CAPABILITIES.get(role)
    if profile is None:
        return []
    granted = {r for r, _ in profile.defaults}
    out = []
    for section, resource in NAVIGATION_SECTIONS:
        if resource is None or WILDCARD in granted or resource in granted:
            out.append(section)
    return out


def is_known_permission(resource: str, action: str) -> bool:
    if resource == WILDCARD:
        return action == WILDCARD or action in ACTIONS
    if resource not in PERMISSION_CATALOG:
        return False
    return action == WILDCARD or action in {a for a, _, _ in PERMISSION_CATALOG[resource]}


def normalize_permissions(perms: Iterable[Permission]) -> List[Permission]:
    """Drop repeated (resource, action) pairs, keeping the first occurrence."""
    seen = set()
    out = []
    for p in perms:
        if (p.resource, p.action) in seen:
            continue
        seen.add((p.resource, p.action))
        out.append(p)
    return out


def toggle_permission(perms: Iterable[Permission], resource: str, action: str) -> List[Permission]:
    current = list(perms)
    if any(p.resource == resource and p.action == action for p in current):
        return [p for p in current if not (p.resource == resource and p.action == action)]
    current.append(Permission(resource, action, permission_name(resource, action)))
    return current


def role_profile_json(role: str) -> Dict[str, Any]:
    profile = ROLE_CAPABILITIES[role]
    return {
        'role': role,
        'title': profile.title,
        'description': profile.description,
        'color': profile.color,
        'default_permissions': [p.to_dict() for p in default_permissions(role)],
        'sections': visible_sections(role),
    }


__all__ = [
    'Permission', 'Actor', 'AuthSession', 'has_permission', 'default_permissions', 'visible_sections',
    'is_known_permission', 'normalize_permissions', 'toggle_permission', 'role_profile_json', 'ALL_ROLES',
]
