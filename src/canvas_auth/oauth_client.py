# src/canvas_auth/oauth_client.py

import logging
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .config import Settings
from .errors import ProviderError

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/login/oauth2/auth"
TOKEN_ENDPOINT_PATH = "/login/oauth2/token"

# Forwarded verbatim from the login request to Canvas when present
PASSTHROUGH_PARAMS = ("scope", "purpose", "force_login", "unique_id")


class ProviderUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id_to_str(cls, v: Any) -> Any:
        # Canvas sends numeric user ids
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class ProviderTokenResponse(BaseModel):
    """Decoded token-exchange reply. Extra claims are kept for the OAUTH_CALLBACK hook."""
    model_config = ConfigDict(extra="allow")

    access_token: str
    user: ProviderUser

    @property
    def user_id(self) -> str:
        return self.user.id


class CanvasOAuthClient:
    """
    Talks to the Canvas OAuth2 endpoints.

    Every call is a single request/response: no retries. The transport is
    injectable so the provider can be replaced in tests.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport

    @property
    def token_url(self) -> str:
        return f"{self.settings.CANVAS_URL}{TOKEN_ENDPOINT_PATH}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.settings.HTTP_TIMEOUT)

    def authorize_url(
        self,
        state: str,
        redirect_uri: str,
        extra: Optional[Mapping[str, str]] = None,
    ) -> str:
        params = [
            ("client_id", self.settings.CLIENT_ID),
            ("response_type", "code"),
            ("state", state),
            ("redirect_uri", redirect_uri),
        ]
        extra = extra or {}
        for name in PASSTHROUGH_PARAMS:
            value = extra.get(name)
            if value is not None:
                params.append((name, value))
        return f"{self.settings.CANVAS_URL}{AUTHORIZE_PATH}?{urlencode(params)}"

    async def exchange_code(self, code: Optional[str]) -> Union[ProviderTokenResponse, ProviderError]:
        """Trade an authorization code for an access token.

        Returns the decoded response, or a ProviderError describing why the
        exchange failed. Never raises for provider-side problems.
        """
        if not code:
            return ProviderError("No authorization code provided")

        payload = {
            "code": code,
            "client_id": self.settings.CLIENT_ID,
            "client_secret": self.settings.CLIENT_SECRET,
        }
        try:
            async with self._client() as client:
                response = await client.post(self.token_url, data=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "CanvasOAuthClient: token exchange rejected with status %s", e.response.status_code
            )
            return ProviderError(
                f"Token exchange failed with status {e.response.status_code}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            logger.warning("CanvasOAuthClient: token exchange request failed: %s", e)
            return ProviderError(f"Token exchange request failed: {e}")

        try:
            return ProviderTokenResponse.model_validate(response.json())
        except ValueError as e:
            # covers both a non-JSON body and a pydantic ValidationError
            detail = "missing access_token or user id" if isinstance(e, ValidationError) else "invalid JSON"
            logger.warning("CanvasOAuthClient: unusable token response: %s", detail)
            return ProviderError(
                f"Unusable token response from Canvas ({detail})",
                status_code=response.status_code,
            )

    async def revoke_token(self, access_token: str, expire_all_sessions: bool = False) -> None:
        """Best-effort revocation. Failures are logged, never raised."""
        params = {"expire_sessions": "1"} if expire_all_sessions else None
        try:
            async with self._client() as client:
                response = await client.delete(
                    self.token_url,
                    params=params,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("CanvasOAuthClient: token revocation failed: %s", e)
            return
        logger.info("CanvasOAuthClient: access token revoked (expire_sessions=%s)", expire_all_sessions)
