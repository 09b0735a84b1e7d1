from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, InvalidInput
from app.core.rate_limit import rate_limit
from app.core.security import (
    create_access_token,
    create_email_verification_token,
    create_password_reset_token,
    get_current_user,
    hash_password,
    read_email_verification_token,
    read_password_reset_token,
    verify_password,
)
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.user import User, UserRole
from app.services.email import enqueue_password_reset_email, enqueue_verification_email, enqueue_welcome_email

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None


class MeResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    email_verified: bool


class RegisterRequest(BaseModel):
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=200)
    last_name: str = Field(min_length=1, max_length=200)
    password: str
    phone: str | None = Field(default=None, max_length=32)
    country: str | None = Field(default=None, max_length=100)
    city: str | None = Field(default=None, max_length=100)


class RegisterResponse(BaseModel):
    id: str
    email: str
    email_verified: bool = False
    message: str


class VerifyEmailRequest(BaseModel):
    token: str


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetTokenRequest(BaseModel):
    token: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


def _normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


def _check_password(password: str) -> None:
    if not password or len(password) < int(settings.password_min_length or 0):
        raise InvalidInput(
            "password_too_short",
            f"password must be at least {int(settings.password_min_length)} characters",
        )


@router.post("/register", response_model=RegisterResponse)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_register", limit=10, window_seconds=60),
):
    if not settings.allow_public_register:
        raise HTTPException(status_code=403, detail="registration disabled")

    _check_password(payload.password)
    email = _normalize_email(payload.email)

    existing = db.scalar(select(User).where(User.email == email))
    if existing is not None:
        audit_log(db=db, request=request, event_type="auth_register_failed", meta={"reason": "email_exists"})
        db.commit()
        raise Conflict("email_already_registered", "an account already exists for this email")

    user = User(
        email=email,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        phone=(payload.phone or "").strip() or None,
        country=(payload.country or "").strip() or None,
        city=(payload.city or "").strip() or None,
        role=UserRole.user,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.flush()
    audit_log(db=db, request=request, event_type="auth_register_success", actor_user_id=user.id, target_user_id=user.id)
    token = create_email_verification_token(user)
    out = RegisterResponse(id=str(user.id), email=user.email, message="check your inbox to verify your email")
    name = user.first_name
    db.commit()

    enqueue_verification_email(email=email, name=name, token=token)
    return out


@router.post("/token", response_model=TokenResponse)
def token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_token", limit=20, window_seconds=60),
):
    user = db.scalar(select(User).where(User.email == _normalize_email(form_data.username)))
    if user is None or not verify_password(form_data.password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_login_failed", meta={"email": form_data.username})
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    audit_log(
        db=db,
        request=request,
        event_type="auth_login_success",
        actor_user_id=user.id,
        target_user_id=user.id,
    )
    db.commit()

    return TokenResponse(
        access_token=create_access_token(user_id=str(user.id), role=user.role.value),
        expires_in=int(settings.jwt_access_token_minutes) * 60,
    )


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {
        "id": str(user.id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role.value,
        "email_verified": user.is_email_verified,
    }


@router.post("/verify-email")
def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_verify_email", limit=20, window_seconds=60),
):
    user = read_email_verification_token(db, body.token)
    if user.is_email_verified:
        return {"ok": True, "already_verified": True}

    user.email_verified_at = datetime.now(timezone.utc)
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_email_verified", actor_user_id=user.id, target_user_id=user.id)
    email, name = user.email, user.first_name
    db.commit()

    enqueue_welcome_email(email=email, name=name)
    return {"ok": True, "already_verified": False}


@router.post("/resend-verification")
def resend_verification(
    body: ResendVerificationRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_resend_verification", limit=5, window_seconds=60),
):
    user = db.scalar(select(User).where(User.email == _normalize_email(body.email)))
    # Same answer whether or not the address exists.
    if user is not None and not user.is_email_verified:
        enqueue_verification_email(email=user.email, name=user.first_name, token=create_email_verification_token(user))
    return {"ok": True}


@router.post("/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="auth_change_password", limit=10, window_seconds=60),
):
    if not body.current_password or not verify_password(body.current_password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_change_password_failed", actor_user_id=user.id, target_user_id=user.id)
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    _check_password(body.new_password)

    user.password_hash = hash_password(body.new_password)
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_change_password_success", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}


@router.post("/forgot-password")
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_forgot_password", limit=5, window_seconds=60),
):
    user = db.scalar(select(User).where(User.email == _normalize_email(body.email)))
    # Same answer whether or not the address exists.
    if user is not None:
        token = create_password_reset_token(user)
        audit_log(db=db, request=request, event_type="auth_password_reset_requested", target_user_id=user.id)
        email, name = user.email, user.first_name
        db.commit()
        enqueue_password_reset_email(email=email, name=name, token=token)
    return {"ok": True, "message": "if this email exists, a reset link has been sent"}


@router.post("/verify-reset-token")
def verify_reset_token(
    body: ResetTokenRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_verify_reset_token", limit=20, window_seconds=60),
):
    user = read_password_reset_token(db, body.token)
    return {"ok": True, "email": user.email}


@router.post("/reset-password")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_reset_password", limit=10, window_seconds=60),
):
    user = read_password_reset_token(db, body.token)
    _check_password(body.new_password)

    user.password_hash = hash_password(body.new_password)
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_password_reset", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}
