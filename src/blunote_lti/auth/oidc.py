"""
OIDC Login Initiation

Starts the LTI 1.3 handshake: validates the platform's login request, stores
a fresh state/nonce pair, and builds the redirect to the platform's
authorization endpoint.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from ..core.errors import ConfigurationError, ValidationError
from .models import LoginRequest
from .platforms import PlatformRegistry
from .state_store import StateStore

logger = logging.getLogger("blunote.lti.oidc")

# token_urlsafe(32) -> 43 characters of 64-symbol alphabet (256 bits)
TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def build_redirect_url(base_url: str, params: Mapping[str, Optional[str]]) -> str:
    """Merge `params` into the query of `base_url`, skipping None values."""
    parsed = urlparse(base_url)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    for key, value in params.items():
        if value is None:
            continue
        query[key] = value
    return urlunparse(parsed._replace(query=urlencode(query)))


class OIDCLoginInitiator:
    """
    Builds authorization redirects for third-party initiated logins.

    Parameters
    ----------
    registry : PlatformRegistry
        Trusted platforms; unknown issuers are rejected unless the registry
        runs in non-validated mode.
    state_store : StateStore
        Where the state/nonce pair is recorded for the launch step.
    redirect_uri : str
        This tool's launch endpoint.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        state_store: StateStore,
        redirect_uri: str,
    ) -> None:
        self._registry = registry
        self._states = state_store
        self._redirect_uri = redirect_uri

    async def initiate(self, request: LoginRequest) -> str:
        """
        Record a new login state and return the authorization URL.

        Raises
        ------
        ValidationError
            If the issuer is not a registered platform, or the client id or
            deployment does not belong to its registration.
        ConfigurationError
            If the platform has no authorization endpoint configured.
        """
        registration = self._registry.resolve(request.issuer)
        if registration is None:
            raise ValidationError(f"Issuer {request.issuer!r} is not a registered platform")
        if request.client_id != registration.client_id:
            raise ValidationError(
                f"Client id {request.client_id!r} is not registered for {registration.issuer}"
            )
        if request.deployment_id and not registration.allows_deployment(request.deployment_id):
            raise ValidationError(
                f"Deployment {request.deployment_id!r} is not registered for {registration.issuer}"
            )
        if not registration.auth_login_url:
            raise ConfigurationError(
                f"No authorization endpoint configured for {registration.issuer}"
            )

        state = generate_token()
        nonce = generate_token()
        await self._states.save(state, nonce)

        url = build_redirect_url(
            registration.auth_login_url,
            {
                "scope": "openid",
                "response_type": "id_token",
                "response_mode": "form_post",
                "prompt": "none",
                "client_id": registration.client_id,
                "redirect_uri": self._redirect_uri,
                "state": state,
                "nonce": nonce,
                "login_hint": request.login_hint,
                "lti_message_hint": request.lti_message_hint,
            },
        )

        logger.info(
            "OIDC login initiated (issuer=%s, client_id=%s)",
            request.issuer,
            request.client_id,
        )
        return url

    async def initiate_from_params(self, params: Mapping[str, Any]) -> str:
        """Validate raw request parameters, then `initiate`."""
        return await self.initiate(LoginRequest.from_params(params))
