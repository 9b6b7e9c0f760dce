"""
LTI 1.3 Launch Verification

This module is responsible for:

1. Reading the unverified header and issuer of a platform `id_token`.
2. Resolving the issuer's registration and current key set.
3. Verifying the signature together with issuer, audience and lifetime.
4. Consuming the login state and matching its nonce (single use).
5. Extracting a typed `LaunchClaims` with per-claim presence checks.

Security Model
--------------
- Every step is a hard gate; the verifier returns claims or raises.
- Only RSA signatures are accepted, pinned to the selected key's algorithm.
- The login state is consumed only after the signature checks pass, so a
  forged token cannot burn a legitimate user's state.
- Raw tokens and claim contents never reach the logs.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import jwt
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import (
    IncompleteAssertionError,
    InvalidAssertionError,
    KeyFetchError,
    MalformedTokenError,
    ReplayOrUnknownStateError,
    UnknownKeyError,
)
from .keys import ALLOWED_ALGORITHMS, KeyProvider, select_key
from .models import (
    CLAIM_RESOURCE_LINK,
    CLAIM_ROLES,
    LTI_VERSION,
    OPTIONAL_LAUNCH_CLAIMS,
    REQUIRED_LAUNCH_CLAIMS,
    RESOURCE_LINK_MESSAGE_TYPE,
    LaunchClaims,
)
from .platforms import PlatformRegistration, PlatformRegistry
from .state_store import StateStore

logger = logging.getLogger("blunote.lti.launch")

REQUIRED_JWT_CLAIMS = ["iss", "aud", "exp", "iat", "nonce"]


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _read_unverified(id_token: str) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Return the unverified JOSE header and `iss` claim.

    Raises
    ------
    MalformedTokenError
        If the token is not three dot-separated, decodable segments.
    """
    if not isinstance(id_token, str) or id_token.count(".") != 2:
        raise MalformedTokenError("Token is not three dot-separated segments")

    try:
        header = jwt.get_unverified_header(id_token)
        unverified = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise MalformedTokenError(f"Undecodable token: {type(exc).__name__}") from exc

    issuer = unverified.get("iss")
    return header, issuer if isinstance(issuer, str) else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def extract_launch_claims(payload: Mapping[str, Any]) -> LaunchClaims:
    """
    Populate `LaunchClaims` from a verified payload.

    Raises
    ------
    IncompleteAssertionError
        Naming every required claim that is absent, blank or mistyped.
    """
    missing = [key for key in REQUIRED_LAUNCH_CLAIMS if _is_blank(payload.get(key))]

    roles = payload.get(CLAIM_ROLES)
    if roles is not None and not isinstance(roles, list):
        missing.append(CLAIM_ROLES)

    resource_link = payload.get(CLAIM_RESOURCE_LINK)
    if resource_link is not None and (
        not isinstance(resource_link, Mapping) or _is_blank(resource_link.get("id"))
    ):
        missing.append(CLAIM_RESOURCE_LINK + "#id")

    if missing:
        raise IncompleteAssertionError(
            f"Missing required claims: {', '.join(missing)}",
            missing=missing,
        )

    fields: Dict[str, Any] = {
        "iss": payload["iss"],
        "aud": payload["aud"],
        "exp": int(payload["exp"]),
        "iat": int(payload["iat"]),
        "nonce": payload["nonce"],
    }
    for key, field in REQUIRED_LAUNCH_CLAIMS.items():
        fields[field] = payload[key]
    for key, field in OPTIONAL_LAUNCH_CLAIMS.items():
        if payload.get(key) is not None:
            fields[field] = payload[key]

    try:
        return LaunchClaims(**fields)
    except PydanticValidationError as exc:
        locations = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise IncompleteAssertionError(
            f"Malformed claims: {', '.join(locations)}",
            missing=locations,
        ) from exc


# ---------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------

class LaunchVerifier:
    """
    Verifies platform launch assertions against registered platforms.

    Parameters
    ----------
    registry : PlatformRegistry
        Trusted platforms, keyed by issuer.
    key_provider : KeyProvider
        Source of each platform's current public keys.
    state_store : StateStore
        Login states issued by `OIDCLoginInitiator`.
    leeway_seconds : int
        Clock skew tolerated on `exp` and `iat`.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        key_provider: KeyProvider,
        state_store: StateStore,
        *,
        leeway_seconds: int = 5,
    ) -> None:
        self._registry = registry
        self._keys = key_provider
        self._states = state_store
        self._leeway = leeway_seconds

    async def verify(
        self,
        id_token: str,
        state: str,
        *,
        force_key_refresh: bool = False,
    ) -> LaunchClaims:
        """
        Verify `id_token` for the login identified by `state`.

        Returns
        -------
        LaunchClaims

        Raises
        ------
        MalformedTokenError, KeyFetchError, UnknownKeyError,
        InvalidAssertionError, ReplayOrUnknownStateError,
        IncompleteAssertionError
        """
        header, issuer = _read_unverified(id_token)

        if not issuer:
            raise InvalidAssertionError("Token carries no issuer")
        registration = self._registry.resolve(issuer)
        if registration is None:
            raise InvalidAssertionError(f"Issuer {issuer!r} is not a registered platform")

        keys = await self._keys.get_key_set(registration, force_refresh=force_key_refresh)
        key = select_key(keys, header.get("kid"), header.get("alg"))

        payload = self._decode(id_token, key, registration)
        await self._consume_state(state, payload["nonce"])

        claims = extract_launch_claims(payload)
        self._check_lti_values(claims, registration)

        logger.info(
            "Verified LTI launch (issuer=%s, deployment=%s)",
            registration.issuer,
            claims.deployment_id,
        )
        return claims

    async def verify_with_retry(
        self,
        id_token: str,
        state: str,
        *,
        backoff_seconds: float = 0.25,
    ) -> LaunchClaims:
        """
        `verify`, retried at most once on key-related failures.

        An unknown `kid` is retried immediately with a fresh key set (the
        platform may have rotated keys); a key fetch failure is retried after
        `backoff_seconds`. Both happen before the login state is touched.
        """
        try:
            return await self.verify(id_token, state)
        except UnknownKeyError as exc:
            logger.info("Retrying launch with refreshed key set: %s", exc.reason)
        except KeyFetchError as exc:
            logger.warning("Retrying launch after key fetch failure: %s", exc.reason)
            await asyncio.sleep(backoff_seconds)

        return await self.verify(id_token, state, force_key_refresh=True)

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _decode(
        self,
        id_token: str,
        key: jwt.PyJWK,
        registration: PlatformRegistration,
    ) -> Dict[str, Any]:
        algorithm = key.algorithm_name
        if algorithm not in ALLOWED_ALGORITHMS:
            raise InvalidAssertionError(f"Key algorithm {algorithm!r} is not accepted")

        try:
            payload = jwt.decode(
                id_token,
                key.key,
                algorithms=[algorithm],
                audience=registration.client_id,
                issuer=registration.issuer,
                leeway=self._leeway,
                options={"require": REQUIRED_JWT_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidAssertionError("Token has expired") from exc
        except jwt.ImmatureSignatureError as exc:
            raise InvalidAssertionError("Token used before its issue time") from exc
        except jwt.InvalidAudienceError as exc:
            raise InvalidAssertionError("Invalid token audience") from exc
        except jwt.InvalidIssuerError as exc:
            raise InvalidAssertionError("Invalid token issuer") from exc
        except jwt.MissingRequiredClaimError as exc:
            raise InvalidAssertionError(f"Missing JWT claim: {exc.claim}") from exc
        except jwt.InvalidSignatureError as exc:
            raise InvalidAssertionError("Signature verification failed") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidAssertionError(
                f"Invalid token: {type(exc).__name__}"
            ) from exc

        aud = payload["aud"]
        azp = payload.get("azp")
        if azp is not None and azp != registration.client_id:
            raise InvalidAssertionError("Authorized party does not match client id")
        if isinstance(aud, list) and len(aud) > 1 and azp is None:
            raise InvalidAssertionError("Multiple audiences without authorized party")

        return payload

    async def _consume_state(self, state: str, nonce: Any) -> None:
        if not state:
            raise ReplayOrUnknownStateError("No state presented")

        entry = await self._states.consume(state)
        if entry is None:
            raise ReplayOrUnknownStateError("State unknown, expired or already used")

        if not isinstance(nonce, str) or not hmac.compare_digest(
            entry.nonce.encode(), nonce.encode()
        ):
            raise ReplayOrUnknownStateError("Nonce does not match login state")

    @staticmethod
    def _check_lti_values(
        claims: LaunchClaims,
        registration: PlatformRegistration,
    ) -> None:
        if claims.version != LTI_VERSION:
            raise InvalidAssertionError(f"Unsupported LTI version {claims.version!r}")
        if claims.message_type != RESOURCE_LINK_MESSAGE_TYPE:
            raise InvalidAssertionError(
                f"Unsupported message type {claims.message_type!r}"
            )
        if not registration.allows_deployment(claims.deployment_id):
            raise InvalidAssertionError(
                f"Deployment {claims.deployment_id!r} is not registered"
            )
