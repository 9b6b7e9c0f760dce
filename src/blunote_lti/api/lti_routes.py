"""
LTI Routes: OIDC Login, Launch and Tool Metadata

This module exposes the LTI 1.3 handshake over HTTP:
- `/lti/oidc/login`: third-party initiated login (GET or POST)
- `/lti/launch`: platform form post carrying `id_token` and `state`
- `/lti/session/{session_id}`: bootstrap read of a verified session
- `/lti/.well-known/jwks.json`: the tool's public keys
- `/lti/config`: tool configuration for platform registration

Security Model
--------------
- Launch failures of every kind produce the same 401 body; the discriminated
  reason is only logged (see `core.errors.lti_error_handler`).
- A session is stored only after the whole verification succeeded.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from ..auth.launch import LaunchVerifier
from ..auth.oidc import OIDCLoginInitiator
from ..auth.roles import normalize_roles
from ..auth.session import materialize_session
from ..auth.tool_keys import ToolKeySet, build_tool_configuration
from ..config import Settings
from ..core.errors import ValidationError
from ..sessions.store import SessionStore
from .dependencies import (
    get_launch_verifier,
    get_login_initiator,
    get_session_store,
    get_settings_dep,
    get_tool_keys,
)
from .launch_page import render_launch_page
from .models import SessionSummary

logger = logging.getLogger("blunote.lti.routes")

router = APIRouter(prefix="/lti", tags=["lti"])

LAUNCH_FIELDS = ("id_token", "state")


# ---------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------

async def _request_params(request: Request) -> Dict[str, Any]:
    """Query parameters, overlaid with form fields for POST requests."""
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


# ---------------------------------------------------------------------
# OIDC login
# ---------------------------------------------------------------------

@router.api_route(
    "/oidc/login",
    methods=["GET", "POST"],
    summary="Start the LTI 1.3 OIDC login",
    status_code=status.HTTP_302_FOUND,
)
async def oidc_login(
    request: Request,
    initiator: Annotated[OIDCLoginInitiator, Depends(get_login_initiator)],
) -> RedirectResponse:
    params = await _request_params(request)
    url = await initiator.initiate_from_params(params)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


# ---------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------

@router.post(
    "/launch",
    summary="Verify an LTI 1.3 resource link launch",
    response_class=HTMLResponse,
)
async def launch(
    request: Request,
    verifier: Annotated[LaunchVerifier, Depends(get_launch_verifier)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
) -> HTMLResponse:
    form = await request.form()
    id_token = form.get("id_token")
    state = form.get("state")

    missing = [name for name, value in zip(LAUNCH_FIELDS, (id_token, state)) if not value]
    if missing or not isinstance(id_token, str) or not isinstance(state, str):
        raise ValidationError(
            "Missing id_token or state parameter",
            missing=missing or list(LAUNCH_FIELDS),
            required=LAUNCH_FIELDS,
        )

    claims = await verifier.verify_with_retry(
        id_token,
        state,
        backoff_seconds=settings.lti_key_fetch_retry_backoff_seconds,
    )
    session = materialize_session(
        claims,
        normalize_roles(claims.roles),
        ttl=timedelta(seconds=settings.lti_session_ttl_seconds),
    )
    sessions.put(session)

    logger.info(
        "LTI launch successful (session=%s, course=%s, role=%s)",
        session.session_id,
        session.course_id,
        session.primary_role.value,
    )

    summary = SessionSummary.from_session(session)
    return HTMLResponse(render_launch_page(summary, str(settings.lti_frontend_url)))


@router.get(
    "/session/{session_id}",
    response_model=SessionSummary,
    summary="Read a verified session for the frontend bootstrap",
)
async def get_session(
    session_id: str,
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> SessionSummary:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found or expired.",
        )
    return SessionSummary.from_session(session)


# ---------------------------------------------------------------------
# Tool metadata
# ---------------------------------------------------------------------

@router.get("/.well-known/jwks.json", summary="Tool public key set")
async def jwks(
    tool_keys: Annotated[ToolKeySet, Depends(get_tool_keys)],
) -> Dict[str, Any]:
    return tool_keys.jwks()


@router.get("/config", summary="Tool configuration for platform registration")
async def tool_config(
    settings: Annotated[Settings, Depends(get_settings_dep)],
) -> Dict[str, Any]:
    return build_tool_configuration(str(settings.lti_tool_url), settings.lti_tool_title)
