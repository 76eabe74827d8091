"""Main entry point for the browser control service.

Serves the browser session, action and AI-navigation API over FastAPI, or
screens text and URLs from the command line.

Security Features:
- JWT auth with users stored in a local JSON database
- CORS, trusted hosts, rate limiting and CSRF protection for web clients
- Prompt-injection and URL screening in front of every browser action
"""

import argparse
import contextlib
import json
import logging
import os
from typing import List

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi_csrf_protect import CsrfProtect
from fastapi_csrf_protect.exceptions import CsrfProtectError
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded as HttpRateLimitExceeded

import config
from api import browser_error_handler, router as browser_router
from auth.router import router as auth_router
from control.errors import BrowserControlError
from control.service import BrowserControl
from guard.logger import CredentialFilter, get_logger
from guard.security import detect_prompt_injection, validate_url
from limiter import UserRateLimiter, limiter
from log.record import ActionRecorder
from sessions.manager import JsonSessionStore
from tools.browser_session import PlaywrightDriver
from users import UserManager

# Load environment variables from .env if present
load_dotenv()

CSRF_DISABLE = os.getenv("CSRF_DISABLE", "false").lower() == "true"
API_USER = os.getenv("API_USER", "admin")
API_PASSWORD = os.getenv("API_PASSWORD", "change_me")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
for _handler in logging.getLogger().handlers:
    if not any(isinstance(f, CredentialFilter) for f in _handler.filters):
        _handler.addFilter(CredentialFilter())
logger = get_logger(__name__)

config.SESSION_DIR.mkdir(parents=True, exist_ok=True)
session_store = JsonSessionStore(config.SESSION_DIR)
recorder = ActionRecorder(config.AUDIT_LOG)
user_db = UserManager(config.USER_DB, monthly_credits=config.DEFAULT_MONTHLY_CREDITS)
browser_control = BrowserControl(
    PlaywrightDriver(headless=config.BROWSER_HEADLESS),
    store=session_store,
    events=recorder,
    limiter=UserRateLimiter(cap=config.BROWSER_SESSIONS_PER_HOUR),
    action_timeout=config.BROWSER_ACTION_TIMEOUT,
    selector_timeout=config.BROWSER_SELECTOR_TIMEOUT,
    max_session_age=config.BROWSER_MAX_SESSION_SECONDS,
)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    control: BrowserControl = app.state.browser_control
    control.start_reaper(config.BROWSER_CLEANUP_INTERVAL)
    try:
        yield
    finally:
        # Live pages cannot outlive the process; close them cleanly.
        await control.shutdown()


app = FastAPI(
    title="Browser Guard",
    description="Guarded browser automation for chat assistants",
    lifespan=lifespan,
)


def _csv_env(name: str, default: str = "") -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_csv_env("ALLOWED_HOSTS", "127.0.0.1,localhost,127.0.0.1:8001,localhost:8001,testserver"),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_csv_env("CORS_ALLOWED_ORIGINS"),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-CSRF-Token"],
)

app.include_router(auth_router)
app.include_router(browser_router)

app.state.user_manager = user_db
app.state.session_store = session_store
app.state.recorder = recorder
app.state.browser_control = browser_control

# Operator account from API_USER / API_PASSWORD
if not user_db.user_exists(API_USER):
    try:
        user_db.create_user(API_USER, API_PASSWORD, plan="enterprise")
    except ValueError:
        logger.warning("Could not create operator account %s", API_USER)

# --- Error Mapping ---
app.state.limiter = limiter
app.add_exception_handler(HttpRateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(BrowserControlError, browser_error_handler)

# --- CSRF Protection ---
CSRF_SALT = os.getenv("CSRF_SECRET_SALT")
if not CSRF_SALT and os.getenv("DEBUG", "false").lower() != "true":
    raise RuntimeError("CSRF_SECRET_SALT not set")
CSRF_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
# Paths that never require a CSRF token
CSRF_EXEMPT_PATHS = frozenset({"/auth/token"})


class CsrfSettings(BaseModel):
    secret_key: str = CSRF_SALT or "change_me"


@CsrfProtect.load_config
def get_csrf_config() -> CsrfSettings:  # pragma: no cover - configuration
    return CsrfSettings()


csrf_protect = CsrfProtect()


@app.middleware("http")
async def csrf_middleware(request: Request, call_next):
    needs_token = request.method not in CSRF_SAFE_METHODS and request.url.path not in CSRF_EXEMPT_PATHS
    if needs_token and not CSRF_DISABLE:
        try:
            await csrf_protect.validate_csrf(request)
        except CsrfProtectError as exc:
            logger.info("CSRF check failed for %s %s", request.method, request.url.path)
            return JSONResponse(status_code=403, content={"detail": exc.message})
    return await call_next(request)


@app.get("/status")
@limiter.limit("30/minute")
async def status_endpoint(request: Request) -> dict:
    control: BrowserControl = request.app.state.browser_control
    return {"status": "ok", "version": "1.0.0", "live_sessions": len(control.registry)}


@app.get("/csrf")
async def csrf_token() -> JSONResponse:
    """Issue a CSRF token pair for browser clients."""
    csrf_token, signed = csrf_protect.generate_csrf_tokens()
    response = JSONResponse({"csrf_token": csrf_token})
    csrf_protect.set_csrf_cookie(signed, response)
    return response


# --- CLI Mode ---
def cli_mode(args: List[str], url: bool = False) -> int:
    """Screen text (or a URL with ``--url``) and print the verdict as JSON."""
    text = " ".join(args) if args else input("Text: ")
    if url:
        verdict = validate_url(text)
        print(json.dumps({"url": text, "valid": verdict.valid, "reason": verdict.reason}))
        return 0 if verdict.valid else 1
    finding = detect_prompt_injection(text)
    if finding.is_injection:
        logger.warning("Injection patterns matched: %s", ", ".join(finding.patterns))
    print(json.dumps({"is_injection": finding.is_injection, "patterns": finding.patterns}))
    return 1 if finding.is_injection else 0


# --- Entrypoint ---
def main() -> None:
    """Parse command-line arguments and start the CLI screener or the REST API server."""
    parser = argparse.ArgumentParser(description="Guarded browser automation service")
    parser.add_argument(
        "text", nargs=argparse.REMAINDER, help="Text to screen for prompt injection in CLI mode"
    )
    parser.add_argument(
        "--url", action="store_true", help="Validate the argument as a navigation URL instead"
    )
    parser.add_argument(
        "--api", action="store_true", help="Run REST API server instead of CLI"
    )
    args = parser.parse_args()

    if args.api:
        import uvicorn

        port = int(os.getenv("PORT", "8001"))
        # Warning: ensure the server is not exposed to the public internet.
        uvicorn.run("main:app", host=os.getenv("HOST", "127.0.0.1"), port=port, reload=False)
    else:
        raise SystemExit(cli_mode(args.text, url=args.url))


if __name__ == "__main__":
    main()
