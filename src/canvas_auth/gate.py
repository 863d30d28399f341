# src/canvas_auth/gate.py

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlencode

from .config import Settings, join_path
from .errors import ConfigurationError, ProviderError, StateError
from .oauth_client import PASSTHROUGH_PARAMS, CanvasOAuthClient
from .paths import PathClass, PathMatcher
from .session_data import AuthSession
from .state import StateTokenGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class RedirectTo:
    url: str


GateDecision = Union[Continue, RedirectTo]

CONTINUE = Continue()


async def _call_hook(hook: Any, *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def mount_root(script_name: str) -> str:
    return script_name or "/"


class AuthGate:
    """
    The request-interception state machine.

    Session states are implicit in the session fields: anonymous (no
    user_id), authenticating (oauth_state set, no user_id) and
    authenticated (user_id set). The gate keeps no state of its own
    between requests.
    """

    def __init__(
        self,
        settings: Settings,
        oauth_client: Optional[CanvasOAuthClient] = None,
        state_guard: Optional[StateTokenGuard] = None,
    ):
        missing = settings.missing_options()
        if missing:
            raise ConfigurationError(
                "Missing required canvas_auth settings: " + ", ".join(missing)
            )
        self.settings = settings
        self.matcher = PathMatcher(settings)
        self.oauth_client = oauth_client or CanvasOAuthClient(settings)
        self.state_guard = state_guard or StateTokenGuard()

    def login_url(self, script_name: str = "", state: Optional[str] = None) -> str:
        return join_path(script_name, self.settings.LOGIN_PATH, state or "")

    def failure_url(self, script_name: str, error: str) -> str:
        base = join_path(script_name, self.settings.FAILURE_REDIRECT)
        return f"{base}?{urlencode({'error': error})}"

    async def pre_request(self, path: str, session: AuthSession, script_name: str = "") -> GateDecision:
        path_class = self.matcher.classify(path, script_name)
        if path_class is not PathClass.PROTECTED:
            return CONTINUE

        if session.user_id is None:
            session.oauth_redirect = path
            logger.debug("AuthGate: %s requires login, redirecting", path)
            return RedirectTo(self.login_url(script_name))

        hook = self.settings.AUTHORIZED_HOOK
        if hook is not None and not await _call_hook(hook, session):
            logger.info("AuthGate: user %s is not authorized for %s", session.user_id, path)
            return RedirectTo(join_path(script_name, self.settings.UNAUTHORIZED_REDIRECT))

        return CONTINUE

    def login(self, session: AuthSession, query: Mapping[str, str], origin: str, script_name: str = "") -> str:
        """Start the handshake. Returns the Canvas authorization URL to redirect to."""
        if session.oauth_redirect is None:
            session.oauth_redirect = mount_root(script_name)
        state = self.state_guard.issue()
        session.oauth_state = state

        redirect_uri = f"{origin}{join_path(script_name, self.settings.TOKEN_PATH)}"
        extra = {name: query[name] for name in PASSTHROUGH_PARAMS if name in query}
        logger.info("AuthGate: login started, redirecting to Canvas (return to %s)", session.oauth_redirect)
        return self.oauth_client.authorize_url(state, redirect_uri, extra)

    async def callback(self, session: AuthSession, query: Mapping[str, str], script_name: str = "") -> str:
        """Finish the handshake. Returns where the browser goes next."""
        failure: Optional[StateError] = self.state_guard.verify(session.oauth_state, query.get("state"))
        # single-use nonce, gone whatever the outcome
        session.oauth_state = None

        provider_error = query.get("error")
        if failure is not None or provider_error:
            description = provider_error or str(failure)
            logger.warning("AuthGate: callback rejected: %s", description)
            return self.failure_url(script_name, description)

        result = await self.oauth_client.exchange_code(query.get("code"))
        if isinstance(result, ProviderError):
            return self.failure_url(script_name, str(result))

        session.user_id = result.user_id
        session.access_token = result.access_token
        logger.info("AuthGate: user %s authenticated", result.user_id)

        if self.settings.OAUTH_CALLBACK is not None:
            await _call_hook(self.settings.OAUTH_CALLBACK, result)

        destination = session.oauth_redirect or mount_root(script_name)
        session.oauth_redirect = None
        return destination

    async def logout(self, session: AuthSession, query: Mapping[str, str], script_name: str = "") -> str:
        access_token = session.access_token
        if access_token:
            await self.oauth_client.revoke_token(
                access_token, expire_all_sessions=bool(query.get("expire_sessions"))
            )
        session.clear()
        logger.info("AuthGate: session cleared on logout")
        return join_path(script_name, self.settings.LOGOUT_REDIRECT)
