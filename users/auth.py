"""User accounts, plans and credit balances."""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from passlib.context import CryptContext

from control.errors import InsufficientCredits

PLANS = ("free", "pro", "enterprise")


class UserManager:
    """Persist and authenticate users with hashed passwords.

    Each record holds the password hash, the subscription plan and the monthly
    credit allowance with what has been used of it.  :meth:`debit` is the
    credits collaborator the web layer calls after a successful browser action.
    """

    def __init__(self, db_path: Path, monthly_credits: int = 1000) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.monthly_credits = monthly_credits
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
        self.users: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        if self.db_path.exists():
            self.users = json.loads(self.db_path.read_text(encoding="utf-8"))

    def save(self) -> None:
        self.db_path.write_text(json.dumps(self.users, ensure_ascii=False, indent=2), encoding="utf-8")

    def create_user(self, username: str, password: str, plan: str = "free") -> None:
        if username in self.users:
            raise ValueError("user exists")
        if plan not in PLANS:
            raise ValueError(f"unknown plan: {plan}")
        self.users[username] = {
            "password": self.pwd_context.hash(password),
            "plan": plan,
            "monthly_credits": self.monthly_credits,
            "credits_used": 0,
        }
        self.save()

    def authenticate(self, username: str, password: str) -> bool:
        record = self.users.get(username)
        if not record:
            return False
        return self.pwd_context.verify(password, record["password"])

    def user_exists(self, username: str) -> bool:
        return username in self.users

    def get(self, username: str) -> Optional[Dict[str, Any]]:
        return self.users.get(username)

    def plan(self, username: str) -> str:
        return self.users[username]["plan"]

    def set_plan(self, username: str, plan: str) -> None:
        """Change a user's plan; called from operator or billing code, never from signup."""
        if plan not in PLANS:
            raise ValueError(f"unknown plan: {plan}")
        with self._lock:
            self.users[username]["plan"] = plan
            self.save()

    def available_credits(self, username: str) -> int:
        record = self.users[username]
        return record["monthly_credits"] - record["credits_used"]

    def require_credits(self, username: str, credits: int) -> int:
        """Return the available balance, raising if it is below ``credits``."""
        available = self.available_credits(username)
        if available < credits:
            raise InsufficientCredits(required=credits, available=available)
        return available

    def debit(self, username: str, credits: int, strict: bool = True) -> int:
        """Charge ``credits`` and return the remaining balance.

        With ``strict=False`` the charge is capped at the available balance
        instead of failing.
        """
        with self._lock:
            available = self.available_credits(username)
            if credits > available:
                if strict:
                    raise InsufficientCredits(required=credits, available=available)
                credits = max(available, 0)
            self.users[username]["credits_used"] += credits
            self.save()
            return available - credits

    def reset_credits(self, username: str) -> None:
        with self._lock:
            self.users[username]["credits_used"] = 0
            self.save()
