"""
Authentication: password hashing, JWT issue/verify, user registration and the
FastAPI dependencies that guard write routes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import Settings
from database import UserStore
from errors import Forbidden, NotFound, Unauthorized, ValidationError
from logging_config import get_logger
from schemas import User

logger = get_logger(__name__)

ROLES = ("admin", "customer")

# Use pbkdf2_sha256 to avoid external bcrypt dependency issues
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Verify signature and expiry. Raises ``Unauthorized`` on any failure."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise Unauthorized("Invalid token") from e


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user.get("id"),
        "username": user.get("username"),
        "email": user.get("email"),
        "role": user.get("role"),
        "createdAt": user.get("created_at"),
        "ownerId": user.get("email"),
    }


class AuthService:
    def __init__(self, users: UserStore, settings: Settings):
        self.users = users
        self.settings = settings

    def _token_for(self, user: Dict[str, Any]) -> str:
        return create_access_token(
            {"sub": user["email"], "email": user["email"], "role": user["role"]},
            self.settings,
        )

    def register(self, username: Optional[str], email: Optional[str], password: Optional[str], role: str = "customer") -> Dict[str, Any]:
        if not username or not email or not password:
            raise ValidationError("Username, email, and password are required")
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        if role == "admin":
            raise Forbidden("Admin accounts cannot be self-registered")

        if self.users.find_by_email_or_username(email, username):
            raise ValidationError("User already exists")

        user = User(username=username, email=email.lower(), password_hash=hash_password(password), role=role)
        created = self.users.create(user.model_dump())
        logger.info("user registered", email=created["email"], role=role)
        return {"token": self._token_for(created), "user": public_user(created)}

    def login(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = self.users.find_by_email(email)
        if not user or not verify_password(password, user["password_hash"]):
            logger.info("login rejected", email=email.lower())
            raise Unauthorized("Invalid credentials")
        return {"token": self._token_for(user), "user": public_user(user)}

    def profile(self, email: str) -> Dict[str, Any]:
        user = self.users.find_by_email(email)
        if not user:
            raise NotFound("User not found")
        return public_user(user)

    def ensure_user(self, username: str, email: str, password: str, role: str) -> None:
        """Create a user directly, bypassing registration rules (seeding only)."""
        user = User(username=username, email=email.lower(), password_hash=hash_password(password), role=role)
        self.users.create(user.model_dump())


# =====================
# FastAPI dependencies
# =====================

def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Access denied. No token provided.")
    token = authorization.split(" ", 1)[1].strip()
    payload = decode_access_token(token, request.app.state.settings)
    email = payload.get("email") or payload.get("sub")
    role = payload.get("role")
    if not email or role not in ROLES:
        raise Unauthorized("Invalid token")
    return {"email": email, "role": role}


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user["role"] not in roles:
            raise Forbidden("Access denied. Insufficient permissions.")
        return user
    return checker


def ensure_owner_access(user: Dict[str, Any], owner_id: str) -> None:
    """Admins may write any portfolio; everyone else only their own."""
    if user["role"] == "admin":
        return
    if user["email"].lower() != owner_id.lower():
        raise Forbidden("Access denied. Insufficient permissions.")
