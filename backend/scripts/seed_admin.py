#!/usr/bin/env python
"""Idempotent bootstrap for the administrator account.

Usage:
    python backend/scripts/seed_admin.py                   # ensure schema + admin user
    python backend/scripts/seed_admin.py --show-roles      # print role -> default permission table
    python backend/scripts/seed_admin.py --dry-run         # run logic then rollback (no DB changes)
    python backend/scripts/seed_admin.py --export-json roles.json
    python backend/scripts/seed_admin.py --reset-defaults  # re-apply role defaults to every user

Environment: SEED_ADMIN_EMAIL, SEED_ADMIN_PASSWORD, DATABASE_URL.
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from parcelops import create_app, get_db  # type: ignore
from parcelops.constants.permissions import ALL_ROLES, ROLE_ADMIN, ROLE_CAPABILITIES
from parcelops.models.authz import Base, User
import parcelops.models.customer  # noqa: F401
import parcelops.models.order  # noqa: F401
import parcelops.models.payment  # noqa: F401
import parcelops.models.audit  # noqa: F401
from parcelops.services.authorization import default_permissions, visible_sections


def ensure_schema(session):
    try:
        session.execute(text('SELECT 1 FROM users LIMIT 1'))
    except Exception:
        # bootstrap only; real environments run `alembic upgrade head`
        session.rollback()
        Base.metadata.create_all(session.get_bind())
    session.commit()


def ensure_initial_admin(session):
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    existing = session.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
    if existing:
        print(f"[INFO] Admin {admin_email} already present (role={existing.role}).")
        return False
    user = User(name='Administrator', email=admin_email, role=ROLE_ADMIN, password_hash='')
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    user.permissions = [p.to_dict() for p in default_permissions(ROLE_ADMIN)]
    session.add(user)
    session.flush()
    print(f"[INFO] Created initial admin user {admin_email} with temporary password.")
    return True


def reset_defaults(session):
    changed = 0
    for user in session.execute(select(User)).scalars().all():
        desired = [p.to_dict() for p in default_permissions(user.role)]
        if (user.permissions or []) != desired:
            user.permissions = desired
            changed += 1
    return changed


def build_role_map():
    return {
        role: sorted(f"{r}:{a}" for r, a in ROLE_CAPABILITIES[role].defaults)
        for role in ALL_ROLES
    }


def print_role_summary():
    name_w = max(len(r) for r in ALL_ROLES)
    print(f"{'Role'.ljust(name_w)} | Perms | Sections")
    print('-' * (name_w + 40))
    for role in ALL_ROLES:
        count = len(ROLE_CAPABILITIES[role].defaults)
        print(f"{role.ljust(name_w)} | {str(count).rjust(5)} | {', '.join(visible_sections(role))}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Bootstrap the admin account and inspect role defaults",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed: seed_admin.py\n  dry run: seed_admin.py --dry-run\n  show roles: seed_admin.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role default permissions and visible sections')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    p.add_argument('--reset-defaults', action='store_true', help="Replace every user's permissions with its role defaults")
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        ensure_schema(session)
        try:
            created = ensure_initial_admin(session)
            changed = reset_defaults(session) if args.reset_defaults else 0
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Admin would be created: {created}, users reset: {changed}")
            else:
                session.commit()
                print(f"[DONE] Admin created: {created}, users reset: {changed}")
            if args.show_roles:
                print('\nRole Summary:')
                print_role_summary()
            if args.export_json is not None:
                role_map = build_role_map()
                canonical = json.dumps(role_map, sort_keys=True, separators=(',', ':'))
                payload = {
                    'roles': role_map,
                    'meta': {
                        'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'role_names_sorted': sorted(role_map.keys()),
                    },
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
