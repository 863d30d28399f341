# src/canvas_auth/paths.py

import enum
import re
from typing import Iterable, List, Pattern

from .config import Settings


class PathClass(str, enum.Enum):
    PROTECTED = "protected"
    PUBLIC = "public"
    FLOW_EXEMPT = "flow_exempt"


def _compile(patterns: Iterable[str]) -> List[Pattern[str]]:
    return [re.compile(p) for p in patterns]


class PathMatcher:
    """
    Decides whether a request path needs an authenticated session.

    Flow endpoints are compared by exact string equality after being joined
    to the mount prefix. Public patterns win over protected ones, and a path
    that no protected pattern matches is left open.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._protected = _compile(settings.AUTH_PATHS)
        self._public = _compile(settings.PUBLIC_PATHS)

    def classify(self, path: str, script_name: str = "") -> PathClass:
        if path in self.settings.exempt_paths(script_name):
            return PathClass.FLOW_EXEMPT
        if any(p.search(path) for p in self._public):
            return PathClass.PUBLIC
        if any(p.search(path) for p in self._protected):
            return PathClass.PROTECTED
        return PathClass.PUBLIC

    def is_protected(self, path: str, script_name: str = "") -> bool:
        return self.classify(path, script_name) is PathClass.PROTECTED
