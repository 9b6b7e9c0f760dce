"""
Application components and FastAPI dependency providers.

Components are built once per application in `create_app()` and stored on
`app.state`; handlers receive them through the providers below, so nothing
here is a process-wide singleton.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from fastapi import Request

from ..auth.keys import JWKSKeyProvider, KeyProvider
from ..auth.launch import LaunchVerifier
from ..auth.oidc import OIDCLoginInitiator
from ..auth.platforms import PlatformRegistry
from ..auth.state_store import InMemoryStateStore, StateStore
from ..auth.tool_keys import ToolKeySet
from ..config import Settings
from ..sessions.store import SessionStore


@dataclass
class LTIComponents:
    settings: Settings
    registry: PlatformRegistry
    state_store: StateStore
    key_provider: KeyProvider
    session_store: SessionStore
    tool_keys: ToolKeySet
    login_initiator: OIDCLoginInitiator
    launch_verifier: LaunchVerifier
    # Set when the login state store is database-backed
    db_engine: Optional[Any] = None


def _build_state_store(settings: Settings) -> Tuple[StateStore, Optional[Any]]:
    if settings.state_store_backend == "database":
        from ..db import SqlStateStore, create_session_factory

        engine, factory = create_session_factory(settings.database_url)
        store = SqlStateStore(factory, ttl_seconds=settings.lti_login_state_ttl_seconds)
        return store, engine
    return InMemoryStateStore(ttl_seconds=settings.lti_login_state_ttl_seconds), None


def build_components(
    settings: Settings,
    *,
    registry: Optional[PlatformRegistry] = None,
    state_store: Optional[StateStore] = None,
    key_provider: Optional[KeyProvider] = None,
    session_store: Optional[SessionStore] = None,
) -> LTIComponents:
    """Wire the LTI components from settings; any piece may be supplied."""
    if registry is None:
        registry = PlatformRegistry.from_settings(settings)
    if session_store is None:
        session_store = SessionStore()
    db_engine = None
    if state_store is None:
        state_store, db_engine = _build_state_store(settings)
    if key_provider is None:
        key_provider = JWKSKeyProvider(
            timeout=settings.lti_jwks_timeout_seconds,
            cache_ttl_seconds=settings.lti_jwks_cache_ttl_seconds,
        )
    private_key = settings.lti_tool_private_key

    return LTIComponents(
        settings=settings,
        registry=registry,
        state_store=state_store,
        key_provider=key_provider,
        session_store=session_store,
        tool_keys=ToolKeySet(
            private_key.get_secret_value() if private_key else None,
            settings.lti_tool_key_id,
        ),
        login_initiator=OIDCLoginInitiator(registry, state_store, settings.launch_url),
        launch_verifier=LaunchVerifier(
            registry,
            key_provider,
            state_store,
            leeway_seconds=settings.lti_clock_skew_seconds,
        ),
        db_engine=db_engine,
    )


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.lti.settings


def get_login_initiator(request: Request) -> OIDCLoginInitiator:
    return request.app.state.lti.login_initiator


def get_launch_verifier(request: Request) -> LaunchVerifier:
    return request.app.state.lti.launch_verifier


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.lti.session_store


def get_tool_keys(request: Request) -> ToolKeySet:
    return request.app.state.lti.tool_keys
