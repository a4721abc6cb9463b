import logging
from fastapi import APIRouter, Depends, HTTPException, status
from . import schemas, models, auth
from .storage import Storage, UsernameTaken, get_storage

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _issue_tokens(user: models.User) -> schemas.TokenPair:
    access = auth.create_access_token({"sub": str(user.id)})
    refresh = auth.create_refresh_token({"sub": str(user.id)})
    return schemas.TokenPair(access_token=access, refresh_token=refresh)


@router.post("/register", response_model=schemas.UserOut)
def register(data: schemas.UserCreate, storage: Storage = Depends(get_storage)):
    if storage.get_user_by_username(data.username):
        raise HTTPException(status_code=400, detail="Username already registered")
    try:
        user = storage.create_user(data.username, auth.get_password_hash(data.password))
    except UsernameTaken:
        raise HTTPException(status_code=400, detail="Username already registered")
    logger.info("Registered user %s", user.id)
    return user


@router.post("/login", response_model=schemas.TokenPair)
def login(data: schemas.UserCreate, storage: Storage = Depends(get_storage)):
    user = storage.get_user_by_username(data.username)
    if not user or not auth.verify_password(data.password, user.hashed_password):
        logger.warning("Failed login for %r", data.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return _issue_tokens(user)


@router.post("/refresh", response_model=schemas.TokenPair)
def refresh(data: schemas.RefreshRequest, storage: Storage = Depends(get_storage)):
    payload = auth.decode_token(data.refresh_token)
    if not payload or payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    try:
        user = storage.get_user(int(payload.get("sub")))
    except (TypeError, ValueError):
        user = None
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return _issue_tokens(user)


@router.get("/me", response_model=schemas.UserOut)
def me(user: models.User = Depends(auth.get_current_user)):
    return user
