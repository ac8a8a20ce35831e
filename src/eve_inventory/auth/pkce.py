"""
PKCE session material for the SSO authorization flow.

The verifier and challenge come from oauthlib's client helpers; the
anti-forgery state is a random hex token. Sessions live only for one
authorization attempt and are never persisted.
"""

import hmac
import os
from dataclasses import dataclass, field
from typing import List, Optional

from oauthlib.oauth2 import WebApplicationClient

from ..utils.constants import PKCE_VERIFIER_LENGTH

CODE_CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PkceSession:
    """Verifier, derived challenge and anti-forgery state for one attempt."""

    verifier: str = field(repr=False)
    challenge: str
    state: str

    @classmethod
    def generate(cls, oauth_client: WebApplicationClient) -> "PkceSession":
        verifier = oauth_client.create_code_verifier(PKCE_VERIFIER_LENGTH)
        challenge = oauth_client.create_code_challenge(verifier, CODE_CHALLENGE_METHOD)
        return cls(verifier=verifier, challenge=challenge, state=os.urandom(16).hex())

    def state_matches(self, received: Optional[str]) -> bool:
        """Constant-time comparison against the issued state."""
        if not received:
            return False
        return hmac.compare_digest(received.encode("utf-8"), self.state.encode("utf-8"))


def build_authorization_url(
    oauth_client: WebApplicationClient,
    authorize_url: str,
    redirect_uri: str,
    scopes: List[str],
    session: PkceSession,
) -> str:
    """Build the SSO authorization URL for a PKCE session."""
    return oauth_client.prepare_request_uri(
        authorize_url,
        redirect_uri=redirect_uri,
        scope=scopes,
        state=session.state,
        code_challenge=session.challenge,
        code_challenge_method=CODE_CHALLENGE_METHOD,
    )
