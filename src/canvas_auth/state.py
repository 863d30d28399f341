# src/canvas_auth/state.py

import hmac
import secrets
from typing import Optional

from .errors import StateError

STATE_TOKEN_BYTES = 24


class StateTokenGuard:
    """Issues and checks the CSRF nonce round-tripped through Canvas.

    Verifying the state stops an attacker from intercepting the redirect
    from Canvas to the token path and tricking a logged-in user into
    following it. See
    http://homakov.blogspot.com/2012/07/saferweb-most-common-oauth2.html
    """

    def __init__(self, nbytes: int = STATE_TOKEN_BYTES):
        if nbytes < STATE_TOKEN_BYTES:
            raise ValueError(f"State tokens need at least {STATE_TOKEN_BYTES} bytes of entropy")
        self.nbytes = nbytes

    def issue(self) -> str:
        return secrets.token_urlsafe(self.nbytes)

    def verify(self, issued: Optional[str], supplied: Optional[str]) -> Optional[StateError]:
        """Return None when ``supplied`` matches ``issued``, otherwise a StateError.

        Absent or empty issued state always fails, so a callback can never
        skip the check by arriving without a login having been started.
        """
        if not issued or not supplied:
            return StateError("Invalid OAuth state token provided")
        if not hmac.compare_digest(issued.encode(), supplied.encode()):
            return StateError("Invalid OAuth state token provided")
        return None
