from __future__ import annotations

from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .logging_utils import get_logger
from .models import User, UserRole
from .roles import normalize_email
from .security import create_access_token, decode_token, hash_password, verify_password
from .settings import DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD
from .timezone_utils import now_kst

logger = get_logger(__name__)


def get_user_by_email(session: Session, email: str) -> Optional[User]:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return session.exec(select(User).where(func.lower(User.email) == normalized)).first()


def ensure_default_admin(session: Session) -> User:
    admin = session.exec(select(User).where(User.role == UserRole.ADMIN)).first()
    if admin:
        return admin
    email = normalize_email(DEFAULT_ADMIN_EMAIL)
    if not email:
        raise RuntimeError("Default admin e-mail is empty; set BACKEND_ADMIN_EMAIL")
    password = DEFAULT_ADMIN_PASSWORD.strip()
    if not password:
        raise RuntimeError("Default admin password is empty; set BACKEND_ADMIN_PASSWORD")
    existing = get_user_by_email(session, email)
    if existing:
        existing.role = UserRole.ADMIN
        existing.password_hash = existing.password_hash or hash_password(password)
        existing.updated_at = now_kst()
        admin = existing
    else:
        admin = User(email=email, name="Administrator", role=UserRole.ADMIN, password_hash=hash_password(password))
    session.add(admin)
    session.commit()
    session.refresh(admin)
    logger.warning("Created default admin '%s'. Please change the password immediately.", email)
    return admin


def authenticate_user(
    session: Session,
    *,
    email: str,
    password: str,
) -> Optional[User]:
    user = get_user_by_email(session, email)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def issue_access_token(user: User) -> dict:
    token = create_access_token(str(user.id), role=user.role.value)
    return {"access_token": token, "token_type": "bearer"}


def resolve_principal(session: Session, token: str) -> Optional[User]:
    """Verify a bearer credential and return the user it names."""
    try:
        payload = decode_token(token)
    except ValueError:
        return None
    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        return None
    return session.get(User, user_id)
