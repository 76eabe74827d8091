from fastapi import Request

from control.service import BrowserControl
from sessions.manager import JsonSessionStore

from .auth import UserManager


def get_user_manager(request: Request) -> UserManager:
    return request.app.state.user_manager


def get_browser_control(request: Request) -> BrowserControl:
    return request.app.state.browser_control


def get_session_store(request: Request) -> JsonSessionStore:
    return request.app.state.session_store
