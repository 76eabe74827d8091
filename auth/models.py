"""Pydantic models used for authentication requests and responses."""
from __future__ import annotations

from pydantic import BaseModel


class UserCreate(BaseModel):
    """Payload for creating a new user account."""

    username: str
    password: str


class Token(BaseModel):
    """JWT access token response."""

    access_token: str
    token_type: str = "bearer"


class UserProfile(BaseModel):
    """Plan and credit balance of the signed-in user."""

    username: str
    plan: str
    monthly_credits: int
    credits_used: int
    credits_remaining: int
