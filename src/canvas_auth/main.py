# src/canvas_auth/main.py

import logging
from pathlib import Path
from typing import Optional, Tuple

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .config import Settings
from .gate import AuthGate, RedirectTo
from .oauth_client import CanvasOAuthClient
from .session_data import SESSION_MAX_AGE, AuthSession, InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session_id"
SESSION_COOKIE_MAX_AGE = SESSION_MAX_AGE

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def request_paths(request: Request) -> Tuple[str, str]:
    """Return ``(script_name, current_path)`` for a request.

    ``script_name`` is the mount prefix (ASGI ``root_path``) and
    ``current_path`` is the prefix followed by the path inside the app.
    """
    script_name = request.scope.get("root_path", "") or ""
    path = request.scope.get("path", "")
    if script_name and path.startswith(script_name):
        path = path[len(script_name):]
    return script_name, f"{script_name}{path}"


def get_auth_session(request: Request) -> AuthSession:
    try:
        data = request.state.session
    except AttributeError:
        raise RuntimeError("SessionMiddleware must be installed before canvas_auth") from None
    return AuthSession(data)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


# --- Session Middleware ---
class SessionMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, store: SessionStore, secure: bool = False):
        super().__init__(app)
        self.store = store
        self.secure = secure

    async def dispatch(self, request, call_next):
        session_id = request.cookies.get(SESSION_COOKIE_NAME)
        data = self.store.load(session_id) if session_id else None
        if data is None:
            session_id = self.store.new_session_id()
            data = self.store.load(session_id)
            if data is None:
                data = {}
        request.state.session_id = session_id
        request.state.session = data
        response: StarletteResponse = await call_next(request)
        self.store.save(session_id, request.state.session)
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session_id,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )
        return response


# --- Gate Middleware: redirect unauthenticated/unauthorized users before app routes ---
class CanvasAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, gate: AuthGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request, call_next):
        script_name, current_path = request_paths(request)
        decision = await self.gate.pre_request(current_path, get_auth_session(request), script_name)
        if isinstance(decision, RedirectTo):
            return _redirect(decision.url)
        return await call_next(request)


def render_view(request: Request, header: str = "", message: str = "") -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "canvas_auth.html",
        {"header": header, "message": message},
    )


# --- Authentication Routes ---
def build_auth_router(gate: AuthGate) -> APIRouter:
    settings = gate.settings
    router = APIRouter()

    @router.get(settings.LOGIN_PATH, include_in_schema=False)
    async def login(request: Request):
        script_name, _ = request_paths(request)
        origin = f"{request.url.scheme}://{request.url.netloc}"
        auth_url = gate.login(get_auth_session(request), request.query_params, origin, script_name)
        return _redirect(auth_url)

    @router.get(settings.TOKEN_PATH, include_in_schema=False)
    async def token(request: Request):
        script_name, _ = request_paths(request)
        destination = await gate.callback(get_auth_session(request), request.query_params, script_name)
        return _redirect(destination)

    @router.get(settings.LOGOUT_PATH, include_in_schema=False)
    async def logout(request: Request):
        script_name, _ = request_paths(request)
        destination = await gate.logout(get_auth_session(request), request.query_params, script_name)
        return _redirect(destination)

    @router.get(settings.LOGOUT_REDIRECT, response_class=HTMLResponse, include_in_schema=False)
    async def logged_out(request: Request):
        return render_view(request, "Logged out", "You have been successfully logged out")

    @router.get(settings.UNAUTHORIZED_REDIRECT, response_class=HTMLResponse, include_in_schema=False)
    async def unauthorized(request: Request):
        return render_view(
            request,
            "Authentication Failed",
            "Your canvas account is unauthorized to view this resource",
        )

    @router.get(settings.FAILURE_REDIRECT, response_class=HTMLResponse, include_in_schema=False)
    async def login_failure(request: Request):
        message = "Login could not be completed."
        error = request.query_params.get("error")
        if error:
            message += f" ({error})"
        return render_view(request, "Authentication Failed", message)

    return router


def install_canvas_auth(
    app: FastAPI,
    settings: Settings,
    oauth_client: Optional[CanvasOAuthClient] = None,
    session_store: Optional[SessionStore] = None,
) -> AuthGate:
    """Register the session store, the gate and the flow endpoints on ``app``."""
    gate = AuthGate(settings, oauth_client=oauth_client)
    store = session_store if session_store is not None else InMemorySessionStore()

    app.include_router(build_auth_router(gate))
    # Last added middleware runs first: the session has to exist before the gate reads it
    app.add_middleware(CanvasAuthMiddleware, gate=gate)
    app.add_middleware(SessionMiddleware, store=store, secure=settings.SESSION_COOKIE_SECURE)
    app.state.canvas_auth = gate

    logger.info("CanvasAuth: installed with settings %s", settings.masked())
    return gate


def create_app(
    settings: Settings,
    oauth_client: Optional[CanvasOAuthClient] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    app = FastAPI(
        title="Canvas Auth",
        description="Canvas OAuth2 login gate.",
        version="0.1.0",
    )
    install_canvas_auth(app, settings, oauth_client=oauth_client, session_store=session_store)
    return app
