import json
import os
import sys
from pathlib import Path


def parse_users(raw: str | None, allowed_roles: set[str]):
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, list):
        return []
    users = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        username = str(item.get('username', '')).strip()
        password = str(item.get('password', '')).strip()
        role = str(item.get('role', 'viewer')).strip().lower() or 'viewer'
        if username and password and role in allowed_roles:
            users.append({'username': username, 'password': password, 'role': role})
    return users


def main():
    root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(root / 'backend'))

    import workers_api.models  # noqa: F401
    from workers_api.core.config import settings
    from workers_api.core.security import ROLE_PERMISSIONS, hash_password
    from workers_api.db.base import Base
    from workers_api.db.session import SessionLocal, engine
    from workers_api.models.auth import AuthUser

    Base.metadata.create_all(bind=engine)

    users = parse_users(os.getenv('AUTH_BOOTSTRAP_USERS'), set(ROLE_PERMISSIONS))
    if not users:
        users = [
            {'username': settings.demo_admin_user, 'password': settings.demo_admin_password, 'role': 'admin'},
            {'username': settings.demo_operator_user, 'password': settings.demo_operator_password, 'role': 'operator'},
            {'username': settings.demo_viewer_user, 'password': settings.demo_viewer_password, 'role': 'viewer'},
        ]

    db = SessionLocal()
    created = 0
    updated = 0
    try:
        for user in users:
            row = db.query(AuthUser).filter(AuthUser.username == user['username']).first()
            if row is None:
                row = AuthUser(username=user['username'])
                db.add(row)
                created += 1
            else:
                updated += 1
            row.password_hash = hash_password(user['password'])
            row.role = user['role']
            row.is_active = True
        db.commit()
    finally:
        db.close()

    print(json.dumps({'ok': True, 'created': created, 'updated': updated, 'total': len(users)}, ensure_ascii=False))


if __name__ == '__main__':
    main()
