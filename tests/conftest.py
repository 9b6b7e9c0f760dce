import json
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from blunote_lti.auth.keys import KeyProvider
from blunote_lti.auth.launch import LaunchVerifier
from blunote_lti.auth.models import (
    CLAIM_CONTEXT,
    CLAIM_DEPLOYMENT_ID,
    CLAIM_MESSAGE_TYPE,
    CLAIM_RESOURCE_LINK,
    CLAIM_ROLES,
    CLAIM_VERSION,
)
from blunote_lti.auth.oidc import OIDCLoginInitiator
from blunote_lti.auth.platforms import PlatformRegistry
from blunote_lti.auth.state_store import InMemoryStateStore
from blunote_lti.config import Settings
from blunote_lti.core.errors import KeyFetchError

ISSUER = "https://lms.example"
CLIENT_ID = "c1"
KID = "platform-key-1"
DEPLOYMENT_ID = "deployment-1"
AUTH_LOGIN_URL = "https://lms.example/api/lti/authorize_redirect"
JWKS_URL = "https://lms.example/api/lti/security/jwks"
TOOL_URL = "https://tool.example"

INSTRUCTOR_ROLE = "http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor"
LEARNER_ROLE = "http://purl.imsglobal.org/vocab/lis/v2/membership#Learner"


# ---------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------

def generate_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key: rsa.RSAPrivateKey, kid: str = KID) -> Dict[str, Any]:
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


@pytest.fixture(scope="session")
def platform_key() -> rsa.RSAPrivateKey:
    return generate_rsa_key()


@pytest.fixture(scope="session")
def other_key() -> rsa.RSAPrivateKey:
    return generate_rsa_key()


class StaticKeyProvider(KeyProvider):
    """
    In-process key provider.

    `refreshed_keys` replaces `keys` on a forced refresh; `failures` makes
    the next N calls raise KeyFetchError.
    """

    def __init__(
        self,
        keys: List[Dict[str, Any]],
        refreshed_keys: Optional[List[Dict[str, Any]]] = None,
        failures: int = 0,
    ) -> None:
        self.keys = keys
        self.refreshed_keys = refreshed_keys
        self.failures = failures
        self.calls: List[bool] = []

    async def get_key_set(self, registration, *, force_refresh=False):
        self.calls.append(force_refresh)
        if self.failures > 0:
            self.failures -= 1
            raise KeyFetchError("platform unavailable")
        if force_refresh and self.refreshed_keys is not None:
            return self.refreshed_keys
        return self.keys


# ---------------------------------------------------------------------
# Assertions
# ---------------------------------------------------------------------

def make_claims(nonce: str, **overrides: Any) -> Dict[str, Any]:
    now = int(time.time())
    claims: Dict[str, Any] = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "u42",
        "iat": now,
        "exp": now + 300,
        "nonce": nonce,
        "name": "Ada Lovelace",
        "email": "ada@example.edu",
        CLAIM_MESSAGE_TYPE: "LtiResourceLinkRequest",
        CLAIM_VERSION: "1.3.0",
        CLAIM_DEPLOYMENT_ID: DEPLOYMENT_ID,
        CLAIM_RESOURCE_LINK: {"id": "rl-1", "title": "Week 1"},
        CLAIM_ROLES: [INSTRUCTOR_ROLE],
        CLAIM_CONTEXT: {"id": "course9", "title": "Algorithms", "label": "CS201"},
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


def sign(claims: Dict[str, Any], private_key, kid: str = KID, algorithm: str = "RS256") -> str:
    return jwt.encode(claims, private_key, algorithm=algorithm, headers={"kid": kid})


def redirect_params(url: str) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# ---------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        lti_tool_url=TOOL_URL,
        lti_frontend_url="https://app.example",
        lti_platform_issuer=ISSUER,
        lti_platform_client_id=CLIENT_ID,
        lti_platform_auth_login_url=AUTH_LOGIN_URL,
        lti_platform_jwks_url=JWKS_URL,
        lti_key_fetch_retry_backoff_seconds=0,
    )


@pytest.fixture
def registry(settings) -> PlatformRegistry:
    return PlatformRegistry.from_settings(settings)


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore(ttl_seconds=600)


@pytest.fixture
def key_provider(platform_key) -> StaticKeyProvider:
    return StaticKeyProvider([public_jwk(platform_key)])


@pytest.fixture
def initiator(registry, state_store, settings) -> OIDCLoginInitiator:
    return OIDCLoginInitiator(registry, state_store, settings.launch_url)


@pytest.fixture
def verifier(registry, key_provider, state_store) -> LaunchVerifier:
    return LaunchVerifier(registry, key_provider, state_store, leeway_seconds=0)


LOGIN_PARAMS = {
    "iss": ISSUER,
    "login_hint": "u42",
    "target_link_uri": "https://tool.example/launch",
    "client_id": CLIENT_ID,
}
