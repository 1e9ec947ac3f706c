# gymcoach/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .database import get_db
from .errors import NotAuthenticatedError, NotAuthorizedError
from .models import User
from .settings import ACCESS_TOKEN_EXPIRE_MINUTES, SECRET_KEY

ALGORITHM = "HS256"

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)

# Swagger will use this to send: Authorization: Bearer <token>
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# -------------------------------------------------------------------
# Roles
# -------------------------------------------------------------------
ROLE_ADMIN = "ADMIN"
ROLE_COACH = "COACH"
ROLE_STUDENT = "STUDENT"
VALID_ROLES = {ROLE_ADMIN, ROLE_COACH, ROLE_STUDENT}


def normalize_role(value: Optional[str]) -> str:
    r = (value or "").strip().upper()
    return r if r in VALID_ROLES else ROLE_STUDENT


def is_admin(user: User) -> bool:
    return normalize_role(getattr(user, "role", None)) == ROLE_ADMIN


def is_coach(user: User) -> bool:
    return normalize_role(getattr(user, "role", None)) == ROLE_COACH


# -------------------------------------------------------------------
# Password helpers
# -------------------------------------------------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def create_access_token(
    *,
    user_id: int,
    subject: str,
    role: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Token claims:
      sub: email (debug/compat)
      uid: user id
      rol: role (ADMIN/COACH/STUDENT)
      exp: expiry datetime
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": subject,
        "uid": int(user_id),
        "rol": normalize_role(role),
        "exp": expire,
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        if not payload.get("uid"):
            raise ValueError("Token missing required claims")
        return payload
    except (JWTError, ValueError) as e:
        raise ValueError("Invalid token") from e


def _auth_401() -> NotAuthenticatedError:
    return NotAuthenticatedError("Not authenticated")


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Validates Bearer token and loads the User.
    """
    if not token:
        raise _auth_401()
    try:
        payload = decode_token(token)
        user_id = int(payload["uid"])
    except (ValueError, TypeError, KeyError):
        raise _auth_401()

    user = db.get(User, user_id)
    if not user:
        raise _auth_401()

    if not user.is_active:
        raise NotAuthorizedError("Inactive user")

    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise NotAuthorizedError("Admin privileges required")
    return user


def require_coach(user: User = Depends(get_current_user)) -> User:
    if not is_coach(user):
        raise NotAuthorizedError("Coach privileges required")
    return user


def require_student(user: User = Depends(get_current_user)) -> User:
    if normalize_role(user.role) != ROLE_STUDENT:
        raise NotAuthorizedError("Student access only")
    return user
