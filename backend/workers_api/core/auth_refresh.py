from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from workers_api.core.config import settings
from workers_api.models.auth import AuthSession, AuthUserState


def _hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={'error_code': 'UNAUTHORIZED', 'message': message, 'details': None},
    )


def _session_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=settings.jwt_refresh_expire_minutes)


def create_refresh_token(username: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        'sub': username,
        'typ': 'refresh',
        'jti': secrets.token_urlsafe(24),
        'iat': int(now.timestamp()),
        'exp': now + timedelta(minutes=settings.jwt_refresh_expire_minutes),
    }
    return jwt.encode(payload, settings.jwt_refresh_secret_key, algorithm=settings.jwt_algorithm)


def decode_refresh_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_refresh_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthorized('Refresh token inválido')
    if payload.get('typ') != 'refresh':
        raise _unauthorized('Tipo de token inválido')
    return payload


def save_refresh_session(db: Session, username: str, refresh_token: str) -> None:
    db.add(AuthSession(
        username=username,
        refresh_token_hash=_hash_token(refresh_token),
        revoked=False,
        expires_at=_session_expiry(),
    ))
    db.commit()


def revoke_refresh_session(db: Session, refresh_token: str) -> bool:
    row = db.query(AuthSession).filter(AuthSession.refresh_token_hash == _hash_token(refresh_token)).first()
    if not row:
        return False
    row.revoked = True
    row.rotated_at = datetime.utcnow()
    db.commit()
    return True


def revoke_all_sessions(db: Session, username: str) -> int:
    count = (
        db.query(AuthSession)
        .filter(AuthSession.username == username, AuthSession.revoked == False)  # noqa: E712
        .update({AuthSession.revoked: True, AuthSession.rotated_at: datetime.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return int(count or 0)


def rotate_refresh_session(db: Session, old_refresh_token: str, username: str) -> str:
    """
    Exchange a refresh token for a new one. Each token is single use: presenting
    an already rotated token revokes every open session of that user.
    """
    old_row = db.query(AuthSession).filter(AuthSession.refresh_token_hash == _hash_token(old_refresh_token)).first()
    if old_row is None:
        raise _unauthorized('Refresh token desconocido')
    if old_row.revoked:
        revoke_all_sessions(db, username)
        raise _unauthorized('Refresh token revocado')
    if old_row.expires_at is not None and old_row.expires_at < datetime.utcnow():
        raise _unauthorized('Refresh token expirado')
    old_row.revoked = True
    old_row.rotated_at = datetime.utcnow()
    new_refresh = create_refresh_token(username)
    db.add(AuthSession(
        username=username,
        refresh_token_hash=_hash_token(new_refresh),
        revoked=False,
        expires_at=_session_expiry(),
    ))
    db.commit()
    return new_refresh


def _get_user_state(db: Session, username: str) -> AuthUserState:
    row = db.query(AuthUserState).filter(AuthUserState.username == username).first()
    if row is None:
        row = AuthUserState(username=username, failed_attempts=0)
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def assert_not_blocked(db: Session, username: str) -> None:
    row = _get_user_state(db, username)
    if row.blocked_until and row.blocked_until > datetime.utcnow():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                'error_code': 'AUTH_BLOCKED',
                'message': 'Usuario temporalmente bloqueado',
                'details': {'blocked_until': row.blocked_until.isoformat()},
            },
        )


def register_login_failure(db: Session, username: str) -> None:
    row = _get_user_state(db, username)
    row.failed_attempts = int(row.failed_attempts or 0) + 1
    if row.failed_attempts >= settings.auth_max_failed_attempts:
        row.blocked_until = datetime.utcnow() + timedelta(minutes=settings.auth_lock_minutes)
        row.failed_attempts = 0
    row.updated_at = datetime.utcnow()
    db.commit()


def register_login_success(db: Session, username: str) -> None:
    row = _get_user_state(db, username)
    row.failed_attempts = 0
    row.blocked_until = None
    row.updated_at = datetime.utcnow()
    db.commit()
