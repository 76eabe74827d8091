"""JWT authentication routes and utilities."""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt

from users.auth import UserManager
from users.deps import get_user_manager
from .models import Token, UserCreate, UserProfile

SECRET_KEY = os.getenv("JWT_SECRET", "change_me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

router = APIRouter(prefix="/auth", tags=["Auth"])


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token."""

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str, users: UserManager) -> str:
    """Return the username a token was issued to, or raise 401."""

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token") from exc
    username = payload.get("sub")
    if username is None or not users.user_exists(username):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return username


@router.post("/signup")
def signup(payload: UserCreate, users: UserManager = Depends(get_user_manager)) -> dict:
    """Register a new user account on the free plan."""

    if users.user_exists(payload.username):
        raise HTTPException(status_code=400, detail="user exists")
    users.create_user(payload.username, payload.password)
    return {"msg": "created"}


@router.post("/token", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    users: UserManager = Depends(get_user_manager),
) -> Token:
    """Authenticate a user and return an access token."""

    if not users.authenticate(form_data.username, form_data.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")
    token = create_access_token(
        {"sub": form_data.username},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return Token(access_token=token)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    users: UserManager = Depends(get_user_manager),
) -> str:
    """FastAPI dependency to retrieve the current user from a JWT."""

    return verify_token(token, users)


@router.get("/me", response_model=UserProfile)
def me(user: str = Depends(get_current_user), users: UserManager = Depends(get_user_manager)) -> UserProfile:
    """Return the caller's plan and credit balance."""

    record = users.get(user)
    return UserProfile(
        username=user,
        plan=record["plan"],
        monthly_credits=record["monthly_credits"],
        credits_used=record["credits_used"],
        credits_remaining=users.available_credits(user),
    )
