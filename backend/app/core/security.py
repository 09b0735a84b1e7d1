from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import EmailNotVerified, InvalidInput
from app.db.session import get_db
from app.models.user import User, UserRole


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_COOKIE = "lms_token"
PURPOSE_ACCESS = "access"
PURPOSE_VERIFY_EMAIL = "verify_email"
PURPOSE_RESET_PASSWORD = "reset_password"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _encode(*, user_id: str, purpose: str, expires: timedelta, extra: dict | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "purpose": purpose,
        "iat": now,
        "exp": now + expires,
        "iss": settings.jwt_issuer,
        "jti": str(uuid.uuid4()),
    }
    payload.update(extra or {})
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _decode(token: str) -> dict:
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
    )


def create_access_token(*, user_id: str, role: str) -> str:
    return _encode(
        user_id=user_id,
        purpose=PURPOSE_ACCESS,
        expires=timedelta(minutes=settings.jwt_access_token_minutes),
        extra={"role": role},
    )


def create_email_verification_token(user: User) -> str:
    # Bound to the address so a token stops working after an email change.
    return _encode(
        user_id=str(user.id),
        purpose=PURPOSE_VERIFY_EMAIL,
        expires=timedelta(hours=settings.email_verify_token_hours),
        extra={"email": user.email},
    )


def _read_purpose_token(db: Session, token: str, *, purpose: str, message: str) -> tuple[User, dict]:
    try:
        payload = _decode(token)
    except JWTError as e:
        raise InvalidInput("invalid_token", message) from e

    if payload.get("purpose") != purpose:
        raise InvalidInput("invalid_token", message)

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError as e:
        raise InvalidInput("invalid_token", message) from e

    user = db.get(User, user_id)
    if user is None or user.email != payload.get("email"):
        raise InvalidInput("invalid_token", message)
    return user, payload


def read_email_verification_token(db: Session, token: str) -> User:
    user, _ = _read_purpose_token(
        db, token, purpose=PURPOSE_VERIFY_EMAIL, message="verification link is invalid or expired"
    )
    return user


def _password_fingerprint(user: User) -> str:
    return hashlib.sha256(user.password_hash.encode("utf-8")).hexdigest()[:16]


def create_password_reset_token(user: User) -> str:
    # The fingerprint of the current hash makes the link single-use: it dies
    # as soon as the password changes.
    return _encode(
        user_id=str(user.id),
        purpose=PURPOSE_RESET_PASSWORD,
        expires=timedelta(minutes=settings.password_reset_token_minutes),
        extra={"email": user.email, "pwd": _password_fingerprint(user)},
    )


def read_password_reset_token(db: Session, token: str) -> User:
    message = "reset link is invalid or expired"
    user, payload = _read_purpose_token(db, token, purpose=PURPOSE_RESET_PASSWORD, message=message)
    if payload.get("pwd") != _password_fingerprint(user):
        raise InvalidInput("invalid_token", message)
    return user


def _user_from_token(request: Request, db: Session, token: str | None) -> User | None:
    if not token:
        token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        return None

    try:
        payload = _decode(token)
    except JWTError as e:
        raise HTTPException(status_code=401, detail="invalid token") from e
    if payload.get("purpose", PURPOSE_ACCESS) != PURPOSE_ACCESS:
        raise HTTPException(status_code=401, detail="invalid token")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError as e:
        raise HTTPException(status_code=401, detail="invalid token") from e

    user = db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise HTTPException(status_code=401, detail="invalid token")

    request.state.user_id = str(user.id)
    return user


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    token: str | None = Depends(oauth2_scheme),
) -> User:
    user = _user_from_token(request, db, token)
    if user is None:
        raise HTTPException(status_code=401, detail="not authenticated")
    return user


def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
    token: str | None = Depends(oauth2_scheme),
) -> User | None:
    """Anonymous visitors get None; a bad token is still rejected."""

    return _user_from_token(request, db, token)


def get_verified_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_email_verified:
        raise EmailNotVerified()
    return user


def require_roles(*roles: UserRole):
    def _dep(user: User = Depends(get_current_user)) -> User:
        if user.role == UserRole.admin:
            return user

        if user.role not in roles:
            raise HTTPException(status_code=403, detail="forbidden")
        return user

    return _dep
