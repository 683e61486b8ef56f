"""Reusable test helpers for authenticated calls and order lifecycle moves.

Patterns unified:
 - Auth header creation from Actor claims (bypassing /login), so a test can
   hand any role / permission mix straight to the API.
 - Transition assertion for the order lifecycle endpoints.
"""
from __future__ import annotations
from typing import Dict, Iterable, Tuple
from flask_jwt_extended import create_access_token
from parcelops.services.authorization import Actor, Permission

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(user_id: int, role: str = 'customer', perms: Iterable[Tuple[str, str]] = ()):
    """Bearer header for a synthetic actor; call inside an app context."""
    actor = Actor(
        id=user_id,
        name=f'user{user_id}',
        email=f'user{user_id}@example.com',
        role=role,
        permissions=tuple(Permission(r, a) for r, a in perms),
    )
    token = create_access_token(identity=str(user_id), additional_claims=actor.to_claims())
    return {'Authorization': f'Bearer {token}'}

# ---------- Assertion Helpers ---------- #

def assert_transition(client, url: str, headers: Dict[str, str], expected_status: int, expected_body_value: str = None):
    resp = client.post(url, headers=headers)
    assert resp.status_code == expected_status, resp.get_json()
    if expected_status < 400 and expected_body_value is not None:
        assert resp.get_json()['status'] == expected_body_value
    return resp
