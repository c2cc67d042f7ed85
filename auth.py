import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from functools import lru_cache
from typing import Optional

import bcrypt
import jwt
from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from database import User, get_db, utcnow
from emailer import send_otp_email, send_password_reset_email
from errors import (
    AuthError,
    ConflictError,
    EmailDeliveryError,
    NotFoundError,
    StateError,
    ValidationError,
)
from schemas import (
    EmailRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UserOut,
    VerifyOTPRequest,
)

logger = logging.getLogger(__name__)

auth_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

INVALID_CREDENTIALS = "Invalid credentials"
RESET_REQUESTED = "If the email exists, a password reset link has been sent"


# credentials


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))


@lru_cache()
def _dummy_hash() -> str:
    return hash_password(secrets.token_hex(16))


def generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# session tokens


def create_access_token(user_id: int) -> str:
    settings = get_settings()
    expire = utcnow() + timedelta(hours=settings.access_token_expire_hours)
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> User:
    if not token:
        raise AuthError("Access token is required")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        user_id = int(payload.get("sub"))
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except (jwt.InvalidTokenError, TypeError, ValueError):
        raise AuthError("Invalid token")

    user = db.get(User, user_id)
    if user is None:
        raise AuthError("Invalid token")
    return user


def _find_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def _issue_otp(user: User) -> str:
    otp = generate_otp()
    user.otp = otp
    user.otp_expires = utcnow() + timedelta(minutes=get_settings().otp_expire_minutes)
    return otp


def _deliver_otp(user: User, otp: str) -> bool:
    """Best effort: a failed OTP mail never fails the request."""
    settings = get_settings()
    if not settings.mail_configured and not settings.mail_suppress_send:
        logger.warning(
            "Email not configured. OTP for %s is %s", user.email, otp,
            extra={"component": "auth"},
        )
        return False
    try:
        send_otp_email(user.email, user.name, otp)
    except EmailDeliveryError:
        logger.exception("OTP email to %s failed", user.email, extra={"component": "auth"})
        return False
    return True


def _auth_payload(user: User, message: str) -> dict:
    return {
        "success": True,
        "message": message,
        "data": {"token": create_access_token(user.id), "user": UserOut.model_validate(user)},
    }


# routes


@auth_router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    if _find_by_email(db, payload.email):
        raise ConflictError("User with this email already exists")

    user = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        verified=False,
    )
    otp = _issue_otp(user)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User with this email already exists")
    db.refresh(user)
    logger.info("User %s registered", user.id, extra={"component": "auth"})

    if _deliver_otp(user, otp):
        message = "User registered successfully. Please check your email for the verification code."
    else:
        message = "User registered successfully. The verification code could not be emailed; request a new one."
    return {
        "success": True,
        "message": message,
        "data": {"userId": user.id, "email": user.email, "name": user.name},
    }


@auth_router.post("/verify-otp")
def verify_otp(payload: VerifyOTPRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, payload.email)
    if user is None:
        raise NotFoundError("User not found")
    if user.verified:
        raise StateError("Email already verified")

    # Wrong and expired codes share one message.
    matches = bool(user.otp) and hmac.compare_digest(
        user.otp.encode("utf-8"), payload.otp.encode("utf-8")
    )
    expired = user.otp_expires is None or utcnow() > user.otp_expires
    if not matches or expired:
        raise ValidationError("Invalid or expired OTP")

    user.verified = True
    user.otp = None
    user.otp_expires = None
    db.commit()
    db.refresh(user)
    logger.info("User %s verified", user.id, extra={"component": "auth"})
    return _auth_payload(user, "Email verified successfully")


@auth_router.post("/resend-otp")
def resend_otp(payload: EmailRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, payload.email)
    if user is None:
        raise NotFoundError("User not found")
    if user.verified:
        raise StateError("Email already verified")

    otp = _issue_otp(user)
    db.commit()
    if _deliver_otp(user, otp):
        message = "A new verification code has been sent to your email."
    else:
        message = "A new verification code was generated but could not be emailed."
    return {"success": True, "message": message}


@auth_router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, payload.email)
    if user is None:
        # Run one bcrypt check so an unknown email takes as long as a known one.
        verify_password(payload.password, _dummy_hash())
        raise AuthError(INVALID_CREDENTIALS)
    if not verify_password(payload.password, user.password_hash):
        raise AuthError(INVALID_CREDENTIALS)
    if not user.verified:
        raise AuthError("Please verify your email before logging in")

    user.last_login = utcnow()
    db.commit()
    db.refresh(user)
    return _auth_payload(user, "Login successful")


@auth_router.post("/forgot-password")
def forgot_password(payload: EmailRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, payload.email)
    if user is None or not user.verified:
        return {"success": True, "message": RESET_REQUESTED}

    token = generate_reset_token()
    user.reset_token_hash = hash_token(token)
    user.reset_token_expires = utcnow() + timedelta(
        minutes=get_settings().reset_token_expire_minutes
    )
    db.commit()

    try:
        send_password_reset_email(user.email, user.name, token)
    except EmailDeliveryError as exc:
        raise EmailDeliveryError("Failed to send reset email") from exc
    logger.info("Password reset requested for user %s", user.id, extra={"component": "auth"})
    return {"success": True, "message": RESET_REQUESTED}


@auth_router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = (
        db.query(User)
        .filter(
            User.reset_token_hash == hash_token(payload.token),
            User.reset_token_expires > utcnow(),
        )
        .first()
    )
    if user is None:
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(payload.password)
    user.reset_token_hash = None
    user.reset_token_expires = None
    db.commit()
    logger.info("Password reset for user %s", user.id, extra={"component": "auth"})
    return {"success": True, "message": "Password reset successfully"}


@auth_router.get("/profile")
def profile(current_user: User = Depends(get_current_user)):
    return {"success": True, "data": {"user": UserOut.model_validate(current_user)}}
