# tests/conftest.py

from typing import List
from urllib.parse import parse_qs

import httpx
import pytest

from canvas_auth import CanvasOAuthClient, Settings

CANVAS_URL = "https://canvas.example.edu"


class FakeCanvas:
    """Stands in for the Canvas OAuth2 token endpoint."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.token_status = 200
        self.token_body = {"access_token": "canvas-token-1", "user": {"id": 42, "name": "Ada"}}
        self.revoke_status = 200
        self.fail_transport = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_transport:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path != "/login/oauth2/token":
            return httpx.Response(404)
        if request.method == "POST":
            if isinstance(self.token_body, str):
                return httpx.Response(self.token_status, text=self.token_body)
            return httpx.Response(self.token_status, json=self.token_body)
        if request.method == "DELETE":
            return httpx.Response(self.revoke_status, json={})
        return httpx.Response(405)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def posted_form(self, index: int = 0) -> dict:
        request = [r for r in self.requests if r.method == "POST"][index]
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def deletes(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "DELETE"]


def make_settings(**overrides) -> Settings:
    values = {
        "CANVAS_URL": CANVAS_URL,
        "CLIENT_ID": "client-123",
        "CLIENT_SECRET": "s3cret",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def canvas():
    return FakeCanvas()


@pytest.fixture
def oauth_client(settings, canvas):
    return CanvasOAuthClient(settings, transport=canvas.transport)
