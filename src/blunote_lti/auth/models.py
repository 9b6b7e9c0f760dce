"""
Authentication Models

This module defines strongly-typed models for every stage of the LTI 1.3
handshake: the OIDC login request, the stored login state, the typed launch
claim set, and the `VerifiedSession` handed to downstream layers.

Only `VerifiedSession` crosses the trust boundary. Downstream tools must take
the user id from it, never from request input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.errors import ValidationError


# ---------------------------------------------------------------------
# Claim names
# ---------------------------------------------------------------------

LTI_CLAIM_PREFIX = "https://purl.imsglobal.org/spec/lti/claim/"

CLAIM_MESSAGE_TYPE = LTI_CLAIM_PREFIX + "message_type"
CLAIM_VERSION = LTI_CLAIM_PREFIX + "version"
CLAIM_DEPLOYMENT_ID = LTI_CLAIM_PREFIX + "deployment_id"
CLAIM_TARGET_LINK_URI = LTI_CLAIM_PREFIX + "target_link_uri"
CLAIM_RESOURCE_LINK = LTI_CLAIM_PREFIX + "resource_link"
CLAIM_ROLES = LTI_CLAIM_PREFIX + "roles"
CLAIM_CONTEXT = LTI_CLAIM_PREFIX + "context"
CLAIM_LAUNCH_PRESENTATION = LTI_CLAIM_PREFIX + "launch_presentation"

RESOURCE_LINK_MESSAGE_TYPE = "LtiResourceLinkRequest"
LTI_VERSION = "1.3.0"

UNKNOWN_COURSE_ID = "unknown"
UNKNOWN_COURSE_NAME = "Unknown course"


# ---------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------

class LTIRole(str, Enum):
    """Closed role vocabulary used inside the tool."""

    LEARNER = "Learner"
    INSTRUCTOR = "Instructor"
    ADMINISTRATOR = "Administrator"
    CONTENT_DEVELOPER = "ContentDeveloper"


# Highest privilege first.
ROLE_PRECEDENCE = (
    LTIRole.ADMINISTRATOR,
    LTIRole.INSTRUCTOR,
    LTIRole.CONTENT_DEVELOPER,
    LTIRole.LEARNER,
)


# ---------------------------------------------------------------------
# OIDC login
# ---------------------------------------------------------------------

REQUIRED_LOGIN_PARAMS = ("iss", "login_hint", "target_link_uri", "client_id")


class LoginRequest(BaseModel):
    """
    Third-party initiated login parameters sent by the platform.
    """

    issuer: str = Field(..., min_length=1)
    login_hint: str = Field(..., min_length=1)
    target_link_uri: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    deployment_id: Optional[str] = None
    lti_message_hint: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "LoginRequest":
        """
        Build a LoginRequest from raw query/form parameters.

        Raises
        ------
        ValidationError
            Listing every required parameter that is absent or blank.
        """
        def _get(name: str) -> str:
            return str(params.get(name) or "").strip()

        missing = [name for name in REQUIRED_LOGIN_PARAMS if not _get(name)]
        if missing:
            raise ValidationError(
                f"Missing required OIDC parameters: {', '.join(missing)}",
                missing=missing,
                required=REQUIRED_LOGIN_PARAMS,
            )

        return cls(
            issuer=_get("iss"),
            login_hint=_get("login_hint"),
            target_link_uri=_get("target_link_uri"),
            client_id=_get("client_id"),
            deployment_id=_get("lti_deployment_id") or _get("deployment_id") or None,
            lti_message_hint=_get("lti_message_hint") or None,
        )


class LoginState(BaseModel):
    """Value stored under an opaque state token between login and launch."""

    nonce: str = Field(..., min_length=1)
    created_at: datetime

    model_config = ConfigDict(frozen=True, extra="forbid")

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return (now - self.created_at).total_seconds() >= ttl_seconds


# ---------------------------------------------------------------------
# Launch claims
# ---------------------------------------------------------------------

class ResourceLinkClaim(BaseModel):
    id: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class ContextClaim(BaseModel):
    id: Optional[str] = None
    label: Optional[str] = None
    title: Optional[str] = None
    type: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="ignore")


class LaunchPresentationClaim(BaseModel):
    document_target: Optional[str] = None
    return_url: Optional[str] = None
    locale: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class LaunchClaims(BaseModel):
    """
    Verified, typed claim set of an LTI resource link launch.

    Built only by `LaunchVerifier` after the signature, issuer, audience,
    lifetime and nonce checks have passed.
    """

    iss: str = Field(..., min_length=1)
    aud: Union[str, List[str]]
    azp: Optional[str] = None
    sub: str = Field(..., min_length=1)
    exp: int
    iat: int
    nonce: str = Field(..., min_length=1)

    message_type: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    deployment_id: str = Field(..., min_length=1)
    target_link_uri: Optional[str] = None
    resource_link: ResourceLinkClaim
    roles: List[str]
    context: Optional[ContextClaim] = None
    launch_presentation: Optional[LaunchPresentationClaim] = None

    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


# Claim set key -> LaunchClaims field, for claims that must be present.
REQUIRED_LAUNCH_CLAIMS: Dict[str, str] = {
    "sub": "sub",
    CLAIM_MESSAGE_TYPE: "message_type",
    CLAIM_VERSION: "version",
    CLAIM_DEPLOYMENT_ID: "deployment_id",
    CLAIM_RESOURCE_LINK: "resource_link",
    CLAIM_ROLES: "roles",
}

OPTIONAL_LAUNCH_CLAIMS: Dict[str, str] = {
    "azp": "azp",
    CLAIM_TARGET_LINK_URI: "target_link_uri",
    CLAIM_CONTEXT: "context",
    CLAIM_LAUNCH_PRESENTATION: "launch_presentation",
    "name": "name",
    "given_name": "given_name",
    "family_name": "family_name",
    "email": "email",
}


# ---------------------------------------------------------------------
# Verified session
# ---------------------------------------------------------------------

class VerifiedSession(BaseModel):
    """
    Trusted outcome of a successful launch.

    `roles` is never empty and `course_id` is never blank; a launch without
    a context claim carries the `UNKNOWN_COURSE_ID` sentinel, which means
    "no course scoping available".
    """

    session_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1)
    user_email: Optional[str] = None
    course_id: str = Field(..., min_length=1)
    course_name: str = Field(..., min_length=1)
    roles: FrozenSet[LTIRole] = Field(..., min_length=1)
    platform_issuer: str = Field(..., min_length=1)
    deployment_id: str = Field(..., min_length=1)
    resource_link_id: str = Field(..., min_length=1)
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("expires_at")
    @classmethod
    def _expiry_after_creation(cls, v: datetime, info: Any) -> datetime:
        created = info.data.get("created_at")
        if created is not None and v <= created:
            raise ValueError("expires_at must be after created_at")
        return v

    @property
    def has_course(self) -> bool:
        return self.course_id != UNKNOWN_COURSE_ID

    @property
    def primary_role(self) -> LTIRole:
        for role in ROLE_PRECEDENCE:
            if role in self.roles:
                return role
        return LTIRole.LEARNER

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at
