import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request
from passlib.context import CryptContext
from . import models
from .config import get_settings
from .storage import Storage, get_storage

ALGORITHM = "HS256"

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def _encode(data: dict, token_type: str, expires_delta: timedelta):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire, "type": token_type})
    return jwt.encode(to_encode, get_settings().secret_key, algorithm=ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    minutes = get_settings().access_token_expire_minutes
    return _encode(data, "access", expires_delta or timedelta(minutes=minutes))


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None):
    minutes = get_settings().refresh_token_expire_minutes
    return _encode(data, "refresh", expires_delta or timedelta(minutes=minutes))


def decode_token(token: str):
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def get_current_user(request: Request, storage: Storage = Depends(get_storage)) -> models.User:
    """Return the user named by a valid access token, else raise 401."""
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        logger.warning("Rejected invalid access token")
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_owner(resource, user: models.User, name: str = "Resource"):
    """Raise 404 for a missing resource and 403 when ``user`` does not own it."""
    if resource is None:
        raise HTTPException(status_code=404, detail=f"{name} not found")
    if resource.owner_id != user.id:
        logger.warning("User %s denied access to %s %s", user.id, name, resource.id)
        raise HTTPException(status_code=403, detail="Not authorized")
    return resource
