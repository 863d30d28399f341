# src/canvas_auth/errors.py

from typing import Optional


class CanvasAuthError(Exception):
    """Base class for every error raised or returned by canvas_auth."""


class ConfigurationError(CanvasAuthError):
    """Required provider settings are missing or invalid. Fatal at startup."""


class StateError(CanvasAuthError):
    """The OAuth state nonce returned by the provider does not match the one we issued."""


class ProviderError(CanvasAuthError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
