# src/canvas_auth/__init__.py

from .config import Settings, join_path, load_settings
from .errors import CanvasAuthError, ConfigurationError, ProviderError, StateError
from .gate import CONTINUE, AuthGate, Continue, GateDecision, RedirectTo
from .main import (
    CanvasAuthMiddleware,
    SessionMiddleware,
    build_auth_router,
    create_app,
    install_canvas_auth,
)
from .oauth_client import CanvasOAuthClient, ProviderTokenResponse, ProviderUser
from .paths import PathClass, PathMatcher
from .session_data import AuthSession, InMemorySessionStore, SessionData, SessionStore
from .state import StateTokenGuard

__all__ = [
    "AuthGate",
    "AuthSession",
    "CONTINUE",
    "CanvasAuthError",
    "CanvasAuthMiddleware",
    "CanvasOAuthClient",
    "ConfigurationError",
    "Continue",
    "GateDecision",
    "InMemorySessionStore",
    "PathClass",
    "PathMatcher",
    "ProviderError",
    "ProviderTokenResponse",
    "ProviderUser",
    "RedirectTo",
    "SessionData",
    "SessionMiddleware",
    "SessionStore",
    "Settings",
    "StateError",
    "StateTokenGuard",
    "build_auth_router",
    "create_app",
    "install_canvas_auth",
    "join_path",
    "load_settings",
]
