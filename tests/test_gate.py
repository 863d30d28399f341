# tests/test_gate.py

from urllib.parse import parse_qs, urlsplit

import pytest

from canvas_auth import CONTINUE, AuthGate, AuthSession, CanvasOAuthClient, ConfigurationError, RedirectTo

from .conftest import make_settings

ORIGIN = "https://app.example.com"


def make_gate(canvas, **overrides):
    settings = make_settings(**overrides)
    return AuthGate(settings, oauth_client=CanvasOAuthClient(settings, transport=canvas.transport))


@pytest.fixture
def gate(canvas):
    return make_gate(canvas)


@pytest.fixture
def session():
    return AuthSession({})


def query_of(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class TestPreRequest:
    @pytest.mark.asyncio
    async def test_anonymous_on_protected_path(self, gate, session):
        decision = await gate.pre_request("/dashboard", session)
        assert decision == RedirectTo("/canvas-auth-login")
        assert session.oauth_redirect == "/dashboard"
        # login is started by the login endpoint, not here
        assert session.oauth_state is None

    @pytest.mark.asyncio
    async def test_flow_paths_pass(self, gate, session):
        assert await gate.pre_request("/canvas-auth-token", session) is CONTINUE
        assert session.oauth_redirect is None

    @pytest.mark.asyncio
    async def test_public_path_passes(self, canvas, session):
        gate = make_gate(canvas, AUTH_PATHS=[".*"], PUBLIC_PATHS=["/health"])
        assert await gate.pre_request("/health", session) is CONTINUE
        decision = await gate.pre_request("/dashboard", session)
        assert decision == RedirectTo("/canvas-auth-login")
        assert session.oauth_redirect == "/dashboard"

    @pytest.mark.asyncio
    async def test_authenticated_passes(self, gate):
        assert await gate.pre_request("/dashboard", AuthSession({"user_id": "42"})) is CONTINUE

    @pytest.mark.asyncio
    async def test_mounted_redirect(self, gate, session):
        decision = await gate.pre_request("/app/dashboard", session, "/app")
        assert decision == RedirectTo("/app/canvas-auth-login")
        assert session.oauth_redirect == "/app/dashboard"

    @pytest.mark.asyncio
    async def test_authorized_hook_false(self, canvas):
        gate = make_gate(canvas, AUTHORIZED_HOOK=lambda s: s.user_id == "1")
        session = AuthSession({"user_id": "42", "access_token": "tok"})
        assert await gate.pre_request("/dashboard", session) == RedirectTo("/unauthorized")
        # unauthorized does not log the user out
        assert session.user_id == "42"

    @pytest.mark.asyncio
    async def test_authorized_hook_true(self, canvas):
        gate = make_gate(canvas, AUTHORIZED_HOOK=lambda s: True)
        assert await gate.pre_request("/dashboard", AuthSession({"user_id": "42"})) is CONTINUE

    @pytest.mark.asyncio
    async def test_async_authorized_hook(self, canvas):
        async def never(session):
            return False

        gate = make_gate(canvas, AUTHORIZED_HOOK=never)
        decision = await gate.pre_request("/dashboard", AuthSession({"user_id": "42"}))
        assert decision == RedirectTo("/unauthorized")

    @pytest.mark.asyncio
    async def test_hook_not_called_for_anonymous(self, canvas, session):
        calls = []
        gate = make_gate(canvas, AUTHORIZED_HOOK=lambda s: calls.append(s) or True)
        await gate.pre_request("/dashboard", session)
        assert calls == []


class TestLogin:
    def test_issues_state_and_builds_url(self, gate, session):
        session.oauth_redirect = "/dashboard"
        url = gate.login(session, {}, ORIGIN)
        params = query_of(url)
        assert params["state"] == session.oauth_state
        assert params["client_id"] == "client-123"
        assert params["response_type"] == "code"
        assert params["redirect_uri"] == f"{ORIGIN}/canvas-auth-token"
        assert session.oauth_redirect == "/dashboard"
        assert session.user_id is None

    def test_direct_login_defaults_redirect_to_root(self, gate, session):
        gate.login(session, {}, ORIGIN)
        assert session.oauth_redirect == "/"

    def test_mounted_login(self, gate, session):
        url = gate.login(session, {}, ORIGIN, "/app")
        assert session.oauth_redirect == "/app"
        assert query_of(url)["redirect_uri"] == f"{ORIGIN}/app/canvas-auth-token"

    def test_fresh_state_each_time(self, gate, session):
        gate.login(session, {}, ORIGIN)
        first = session.oauth_state
        gate.login(session, {}, ORIGIN)
        assert session.oauth_state != first

    def test_forwards_optional_params(self, gate, session):
        url = gate.login(session, {"force_login": "1", "purpose": "grading app", "foo": "bar"}, ORIGIN)
        params = query_of(url)
        assert params["force_login"] == "1"
        assert params["purpose"] == "grading app"
        assert "foo" not in params

    def test_login_url_helper(self, gate):
        assert gate.login_url() == "/canvas-auth-login"
        assert gate.login_url("/app", "abc") == "/app/canvas-auth-login/abc"


class TestCallback:
    @pytest.mark.asyncio
    async def test_success(self, gate, session, canvas):
        session.oauth_redirect = "/dashboard"
        gate.login(session, {}, ORIGIN)
        destination = await gate.callback(session, {"code": "abc", "state": session.oauth_state})
        assert destination == "/dashboard"
        assert session.user_id == "42"
        assert session.access_token == "canvas-token-1"
        assert session.oauth_state is None
        assert session.oauth_redirect is None

    @pytest.mark.asyncio
    async def test_success_without_redirect_goes_to_root(self, gate, session):
        session.oauth_state = "nonce"
        assert await gate.callback(session, {"code": "abc", "state": "nonce"}, "/app") == "/app"

    @pytest.mark.asyncio
    async def test_tampered_state(self, gate, session, canvas):
        session.oauth_state = "nonce"
        destination = await gate.callback(session, {"code": "abc", "state": "forged"})
        assert destination.startswith("/login-failure?")
        assert query_of(destination)["error"] == "Invalid OAuth state token provided"
        assert session.user_id is None
        assert session.oauth_state is None
        assert canvas.requests == []

    @pytest.mark.asyncio
    async def test_no_login_started(self, gate, session, canvas):
        destination = await gate.callback(session, {"code": "abc"})
        assert query_of(destination)["error"]
        assert canvas.requests == []

    @pytest.mark.asyncio
    async def test_provider_error_param(self, gate, session, canvas):
        session.oauth_state = "nonce"
        destination = await gate.callback(session, {"error": "access_denied", "state": "nonce"})
        assert query_of(destination)["error"] == "access_denied"
        assert session.oauth_state is None
        assert canvas.requests == []

    @pytest.mark.asyncio
    async def test_provider_error_preferred_over_state_error(self, gate, session):
        destination = await gate.callback(session, {"error": "access_denied"})
        assert query_of(destination)["error"] == "access_denied"

    @pytest.mark.asyncio
    async def test_exchange_failure(self, gate, session, canvas):
        canvas.token_status = 400
        session.oauth_state = "nonce"
        destination = await gate.callback(session, {"code": "abc", "state": "nonce"}, "/app")
        assert destination.startswith("/app/login-failure?error=")
        assert "400" in query_of(destination)["error"]
        assert session.user_id is None
        assert session.access_token is None

    @pytest.mark.asyncio
    async def test_oauth_callback_hook_gets_full_response(self, canvas, session):
        received = []
        gate = make_gate(canvas, OAUTH_CALLBACK=received.append)
        session.oauth_state = "nonce"
        await gate.callback(session, {"code": "abc", "state": "nonce"})
        (response,) = received
        assert response.user_id == "42"
        assert response.user.model_extra["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_async_oauth_callback_hook(self, canvas, session):
        received = []

        async def provision(response):
            received.append(response.user_id)

        gate = make_gate(canvas, OAUTH_CALLBACK=provision)
        session.oauth_state = "nonce"
        await gate.callback(session, {"code": "abc", "state": "nonce"})
        assert received == ["42"]

    @pytest.mark.asyncio
    async def test_hook_not_called_on_failure(self, canvas, session):
        received = []
        gate = make_gate(canvas, OAUTH_CALLBACK=received.append)
        await gate.callback(session, {"code": "abc", "state": "forged"})
        assert received == []


class TestLogout:
    @pytest.mark.asyncio
    async def test_revokes_and_clears(self, gate, canvas):
        session = AuthSession({"user_id": "42", "access_token": "tok", "cart": ["book"]})
        destination = await gate.logout(session, {})
        assert destination == "/logged-out"
        assert session.data == {}
        (request,) = canvas.deletes()
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_expire_sessions_flag(self, gate, canvas):
        session = AuthSession({"user_id": "42", "access_token": "tok"})
        await gate.logout(session, {"expire_sessions": "1"}, "/app")
        (request,) = canvas.deletes()
        assert request.url.params["expire_sessions"] == "1"

    @pytest.mark.asyncio
    async def test_twice_is_harmless(self, gate, canvas):
        session = AuthSession({"user_id": "42", "access_token": "tok"})
        assert await gate.logout(session, {}) == "/logged-out"
        assert await gate.logout(session, {}) == "/logged-out"
        assert len(canvas.deletes()) == 1

    @pytest.mark.asyncio
    async def test_revoke_failure_still_logs_out(self, gate, canvas):
        canvas.fail_transport = True
        session = AuthSession({"user_id": "42", "access_token": "tok"})
        assert await gate.logout(session, {}, "/app") == "/app/logged-out"
        assert session.data == {}


class TestConstruction:
    def test_missing_credentials_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            AuthGate(make_settings(CANVAS_URL="", CLIENT_ID=""))
        assert "CANVAS_URL, CLIENT_ID" in str(exc_info.value)
        assert "CLIENT_SECRET" not in str(exc_info.value)
