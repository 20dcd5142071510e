from datetime import datetime, timedelta, timezone
from typing import Dict, List

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from workers_api.core.config import settings
from workers_api.models.auth import AuthUser

pwd_context = CryptContext(schemes=['pbkdf2_sha256'], deprecated='auto')

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    'admin': ['workers:read', 'workers:write', 'credentials:read', 'credentials:write', 'system:read'],
    # scraping workers and sync workers authenticate as operators
    'operator': ['workers:read', 'workers:write', 'credentials:read', 'credentials:write'],
    'viewer': ['workers:read', 'credentials:read'],
}

DEMO_USERS = {
    settings.demo_admin_user: {'password': settings.demo_admin_password, 'role': 'admin'},
    settings.demo_operator_user: {'password': settings.demo_operator_password, 'role': 'operator'},
    settings.demo_viewer_user: {'password': settings.demo_viewer_password, 'role': 'viewer'},
}


def _identity(username: str, role: str) -> dict:
    role = str(role or 'viewer').strip().lower() or 'viewer'
    return {'username': username, 'role': role, 'permissions': ROLE_PERMISSIONS.get(role, [])}


def authenticate_user(username: str, password: str):
    user = DEMO_USERS.get(username)
    if not user or user['password'] != password:
        return None
    return _identity(username, user['role'])


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def _active_user(db: Session, username: str) -> AuthUser | None:
    return db.query(AuthUser).filter(AuthUser.username == username, AuthUser.is_active == True).first()  # noqa: E712


def resolve_identity(username: str, db: Session | None = None):
    name = str(username or '').strip()
    if not name:
        return None

    if db is not None:
        row = _active_user(db, name)
        if row:
            return _identity(row.username, row.role)

    demo = DEMO_USERS.get(name)
    if demo:
        return _identity(name, demo['role'])

    return None


def authenticate_user_with_db(db: Session | None, username: str, password: str):
    name = str(username or '').strip()
    if not name:
        return None

    if db is not None:
        row = _active_user(db, name)
        if row and verify_password(password, row.password_hash):
            return _identity(row.username, row.role)
        if row:
            return None

    return authenticate_user(name, password)


def create_access_token(data: dict, expires_minutes: int | None = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    to_encode.update({'exp': expire, 'typ': 'access'})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str):
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={'error_code': 'UNAUTHORIZED', 'message': 'Token invalido o expirado', 'details': None},
        )
    if payload.get('typ', 'access') != 'access':
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={'error_code': 'UNAUTHORIZED', 'message': 'Tipo de token invalido', 'details': None},
        )
    return payload


def assert_permission(payload: dict, required: str):
    perms = payload.get('permissions', [])
    if required not in perms:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={'error_code': 'FORBIDDEN', 'message': 'Permiso insuficiente', 'details': {'required': required}},
        )
