"""
Platform Registry

Maps a platform issuer to the registration details this tool holds for it
(client id, authorization endpoint, key set URL, allowed deployments), and
enforces the issuer allow-list.

With `enforce_allowlist=False` the registry runs in non-validated mode: any
issuer resolves to the default registration, so logins from unregistered
issuers are redirected to the default platform. Launch assertions are still
checked against the default registration's issuer. This mode is logged as a
known weakening.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings

logger = logging.getLogger("blunote.lti.platforms")


class PlatformRegistration(BaseModel):
    issuer: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    auth_login_url: Optional[str] = None
    jwks_url: Optional[str] = None
    deployment_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")

    def allows_deployment(self, deployment_id: str) -> bool:
        return not self.deployment_ids or deployment_id in self.deployment_ids


class PlatformRegistry:
    """Lookup of trusted platform registrations by issuer."""

    def __init__(
        self,
        registrations: Iterable[PlatformRegistration],
        *,
        enforce_allowlist: bool = True,
    ) -> None:
        self._by_issuer: Dict[str, PlatformRegistration] = {}
        self._default: Optional[PlatformRegistration] = None
        for registration in registrations:
            self._by_issuer[registration.issuer] = registration
            if self._default is None:
                self._default = registration
        self.enforce_allowlist = enforce_allowlist

        if not enforce_allowlist:
            logger.warning(
                "Issuer allow-list disabled: launches from any issuer will be "
                "checked against the default platform registration only"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlatformRegistry":
        registrations: List[PlatformRegistration] = []
        if settings.lti_platform_issuer and settings.lti_platform_client_id:
            registrations.append(
                PlatformRegistration(
                    issuer=settings.lti_platform_issuer,
                    client_id=settings.lti_platform_client_id,
                    auth_login_url=settings.lti_platform_auth_login_url,
                    jwks_url=settings.lti_platform_jwks_url,
                    deployment_ids=list(settings.lti_platform_deployment_ids),
                )
            )
        for extra in settings.lti_extra_platforms:
            registrations.append(PlatformRegistration(**extra.model_dump()))

        return cls(registrations, enforce_allowlist=settings.lti_enforce_issuer_allowlist)

    def resolve(self, issuer: str) -> Optional[PlatformRegistration]:
        """
        Return the registration for `issuer`, or None if it is not trusted.
        """
        registration = self._by_issuer.get(issuer)
        if registration is not None:
            return registration
        if self.enforce_allowlist or self._default is None:
            return None

        logger.warning(
            "Unregistered issuer %r accepted in non-validated mode", issuer
        )
        return self._default

    def __len__(self) -> int:
        return len(self._by_issuer)
