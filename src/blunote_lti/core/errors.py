"""
Error Taxonomy & Global Error Handling

This module defines the LTI launch error hierarchy and the application-wide
exception handlers that turn those errors into HTTP responses.

Design Goals
------------
- Every failure carries a discriminated kind and an internal reason
- Never leak internal reasons or claim contents to clients
- Log the discriminated reason server-side
- Remain testable and framework-agnostic where possible
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Sequence

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("blunote.errors")


GENERIC_LAUNCH_FAILURE = "Sign-in failed."


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class LTIError(Exception):
    """
    Base class for all LTI handshake failures.

    `reason` is for server logs only and is never sent to the client.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason or self.__class__.__name__)
        self.reason = reason or self.__class__.__name__

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class ValidationError(LTIError):
    """Missing or malformed input at login initiation."""

    def __init__(
        self,
        reason: str = "",
        missing: Sequence[str] = (),
        required: Sequence[str] = (),
    ) -> None:
        super().__init__(reason or "Missing required parameters")
        self.missing = list(missing)
        self.required = list(required)


class ConfigurationError(LTIError):
    """The tool itself is not configured well enough to serve the request."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class LaunchError(LTIError):
    """Base class for launch verification failures; all surface as 401."""

    status_code = status.HTTP_401_UNAUTHORIZED


class MalformedTokenError(LaunchError):
    """The assertion is not a structurally valid JWS compact token."""


class KeyFetchError(LaunchError):
    """The platform key set could not be retrieved (network, HTTP or body)."""


class UnknownKeyError(LaunchError):
    """The assertion references a key id absent from the platform key set."""


class InvalidAssertionError(LaunchError):
    """Signature, issuer, audience, lifetime or LTI claim value check failed."""


class IncompleteAssertionError(LaunchError):
    """A required LTI claim is absent from an otherwise valid assertion."""

    def __init__(self, reason: str = "", missing: Sequence[str] = ()) -> None:
        super().__init__(reason or "Missing required claims")
        self.missing = list(missing)


class ReplayOrUnknownStateError(LaunchError):
    """State missing, expired or already consumed, or nonce mismatch."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def lti_error_handler(request: Request, exc: LTIError) -> JSONResponse:
    """
    Convert an `LTIError` into a deterministic JSON response.

    Behavior
    --------
    - `ValidationError` returns 400 with the list of missing parameters.
    - `ConfigurationError` returns 500 with a fixed message.
    - Every `LaunchError` returns 401 with the same generic message, so the
      client cannot tell a replay from a bad signature.
    """
    payload: Dict[str, Any]

    if isinstance(exc, ValidationError):
        logger.info(
            "Rejected login request %s %s: %s",
            request.method,
            request.url.path,
            exc.reason,
        )
        payload = {"error": "invalid_request", "detail": "Invalid LTI login request."}
        if exc.missing:
            payload = {
                "error": "missing_parameters",
                "required": exc.required,
                "missing": exc.missing,
            }
    elif isinstance(exc, ConfigurationError):
        logger.error("LTI configuration error: %s", exc.reason)
        payload = {"error": "configuration_error", "detail": "LTI tool is not configured."}
    elif isinstance(exc, ReplayOrUnknownStateError):
        # Kept distinct from trust failures: may be an attack or a double submit.
        logger.warning("LTI launch rejected (state): %s: %s", exc.kind, exc.reason)
        payload = {"error": "invalid_launch", "detail": GENERIC_LAUNCH_FAILURE}
    else:
        logger.warning("LTI launch rejected: %s: %s", exc.kind, exc.reason)
        payload = {"error": "invalid_launch", "detail": GENERIC_LAUNCH_FAILURE}

    return JSONResponse(status_code=exc.status_code, content=payload)


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full traceback internally and returns a generic 500 with no
    internal details.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
