"""User accounts and credit balances."""

from .auth import PLANS, UserManager

__all__ = ["PLANS", "UserManager"]
