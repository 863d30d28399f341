# src/canvas_auth/config.py

import logging
import re
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

from dotenv import load_dotenv
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# .env is looked up in the working directory of the hosting process
ENV_FILE_PATH = Path.cwd() / ".env"

REQUIRED_OPTIONS = ("CANVAS_URL", "CLIENT_ID", "CLIENT_SECRET")

_INLINE_FLAGS = (
    (re.IGNORECASE, "i"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
    (re.ASCII, "a"),
)


def pattern_source(pattern: "re.Pattern[str]") -> str:
    """Regex source for a compiled pattern with its flags folded in as an inline group."""
    letters = "".join(letter for flag, letter in _INLINE_FLAGS if pattern.flags & flag)
    return f"(?{letters}){pattern.pattern}" if letters else pattern.pattern


def join_path(*segments: str) -> str:
    """Join URL path segments with exactly one slash between them.

    Empty segments are skipped, so ``join_path("", "/login")`` is ``"/login"``
    and ``join_path("/app", "/login")`` is ``"/app/login"``.
    """
    parts = [s for s in segments if s]
    if not parts:
        return ""
    joined = parts[0]
    for part in parts[1:]:
        joined = joined.rstrip("/") + "/" + part.lstrip("/")
    return joined


class Settings(BaseSettings):
    # === Canvas (identity provider) coordinates ===
    CANVAS_URL: str = ""
    CLIENT_ID: str = ""
    CLIENT_SECRET: str = ""

    # === Flow endpoints, relative to the mount prefix ===
    LOGIN_PATH: str = "/canvas-auth-login"
    TOKEN_PATH: str = "/canvas-auth-token"
    LOGOUT_PATH: str = "/canvas-auth-logout"
    LOGOUT_REDIRECT: str = "/logged-out"
    UNAUTHORIZED_REDIRECT: str = "/unauthorized"
    FAILURE_REDIRECT: str = "/login-failure"

    # === Path gating ===
    # Allow Pydantic to initially see these as strings from the env,
    # the validator below turns them into lists of regex sources
    AUTH_PATHS: Union[str, List[str]] = [".*"]
    PUBLIC_PATHS: Union[str, List[str]] = []

    # === Hooks (code only, never read from the environment) ===
    AUTHORIZED_HOOK: Optional[Callable[..., Any]] = None
    OAUTH_CALLBACK: Optional[Callable[..., Any]] = None

    # === Transport / cookies ===
    HTTP_TIMEOUT: float = 15.0
    SESSION_COOKIE_SECURE: bool = False

    model_config = SettingsConfigDict(
        env_prefix="CANVAS_AUTH_",
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("CANVAS_URL", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("AUTH_PATHS", "PUBLIC_PATHS", mode="before")
    @classmethod
    def parse_comma_separated_patterns(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            if not v.strip():
                return []
            return [pattern.strip() for pattern in v.split(",") if pattern.strip()]
        if isinstance(v, re.Pattern):
            return [pattern_source(v)]
        if isinstance(v, (list, tuple)):
            return [pattern_source(p) if isinstance(p, re.Pattern) else p for p in v]
        raise TypeError("Expected a comma-separated string or a list of patterns.")

    @field_validator("AUTH_PATHS", "PUBLIC_PATHS", mode="after")
    @classmethod
    def check_patterns_compile(cls, v: List[str]) -> List[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid path pattern {pattern!r}: {e}") from e
        return v

    def missing_options(self) -> List[str]:
        return [name for name in REQUIRED_OPTIONS if not getattr(self, name)]

    def exempt_paths(self, script_name: str = "") -> Tuple[str, ...]:
        """The flow endpoints that are never gated, joined to the mount prefix."""
        return tuple(
            join_path(script_name, p)
            for p in (
                self.LOGIN_PATH,
                self.TOKEN_PATH,
                self.LOGOUT_PATH,
                self.LOGOUT_REDIRECT,
                self.UNAUTHORIZED_REDIRECT,
                self.FAILURE_REDIRECT,
            )
        )

    def with_auth_paths(self, *patterns: Union[str, "re.Pattern[str]"]) -> "Settings":
        """Return a copy whose protected patterns are exactly ``patterns``."""
        data = self.model_dump()
        data["AUTH_PATHS"] = list(patterns)
        return type(self)(**data)

    def masked(self) -> dict:
        data = self.model_dump(exclude={"AUTHORIZED_HOOK", "OAUTH_CALLBACK"})
        data["CLIENT_SECRET"] = "***" if self.CLIENT_SECRET else ""
        data["AUTHORIZED_HOOK"] = self.AUTHORIZED_HOOK is not None
        data["OAUTH_CALLBACK"] = self.OAUTH_CALLBACK is not None
        return data


def load_settings(**overrides: Any) -> Settings:
    """Build the process-wide Settings, failing fast when Canvas credentials are absent."""
    if ENV_FILE_PATH.exists():
        load_dotenv(dotenv_path=ENV_FILE_PATH, override=False)
        logger.info("CanvasAuth: loaded .env file from %s", ENV_FILE_PATH)

    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        logger.error("CanvasAuth: invalid configuration: %s", e)
        raise ConfigurationError(f"Invalid canvas_auth configuration: {e}") from e

    missing = settings.missing_options()
    if missing:
        raise ConfigurationError(
            "Missing required canvas_auth settings: " + ", ".join(missing)
        )
    return settings
