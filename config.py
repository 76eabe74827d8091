"""Runtime configuration loaded from environment variables."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(dotenv_path=".env", encoding="utf-8")

# Storage
SESSION_DIR = Path(os.getenv("SESSION_DIR", "session_data"))
USER_DB = Path(os.getenv("USER_DB", "data/users.json"))
AUDIT_LOG = Path(os.getenv("AUDIT_LOG", "data/audit.log"))

# Browser
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
BROWSER_ACTION_TIMEOUT = float(os.getenv("BROWSER_ACTION_TIMEOUT", "30"))
BROWSER_SELECTOR_TIMEOUT = float(os.getenv("BROWSER_SELECTOR_TIMEOUT", "10"))
BROWSER_MAX_SESSION_SECONDS = float(os.getenv("BROWSER_MAX_SESSION_SECONDS", "120"))
BROWSER_CLEANUP_INTERVAL = float(os.getenv("BROWSER_CLEANUP_INTERVAL", "300"))

# Policy
BROWSER_SESSIONS_PER_HOUR = int(os.getenv("BROWSER_SESSIONS_PER_HOUR", "10"))
BROWSER_SESSION_COST = int(os.getenv("BROWSER_SESSION_COST", "50"))
NAVIGATION_MIN_CREDITS = int(os.getenv("NAVIGATION_MIN_CREDITS", "50"))
DEFAULT_MONTHLY_CREDITS = int(os.getenv("DEFAULT_MONTHLY_CREDITS", "1000"))

# LLM used for AI navigation planning
LLM_ENDPOINT = os.getenv("LLM_ENDPOINT", "http://localhost:8000/v1/chat/completions")
LLM_MODEL = os.getenv("LLM_MODEL", "default")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1000"))

# Page chat
CHAT_MIN_CREDITS = int(os.getenv("CHAT_MIN_CREDITS", "50"))
