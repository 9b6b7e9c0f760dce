"""
Platform Key Material

Fetches and caches the public key sets (JWKS) that LMS platforms publish for
verifying their launch assertions.

Key characteristics:
- One HTTP GET per key set URL, bounded by a timeout
- Small per-URL TTL cache, bypassed with `force_refresh=True`
- Every network, HTTP status or body problem surfaces as `KeyFetchError`
- No lock is held across the network call
"""

from __future__ import annotations

import abc
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx
import jwt

from ..core.errors import KeyFetchError, UnknownKeyError
from .platforms import PlatformRegistration

logger = logging.getLogger("blunote.lti.keys")

KeyRecord = Dict[str, Any]

ALLOWED_ALGORITHMS = ("RS256", "RS384", "RS512")


# ---------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------

class KeyProvider(abc.ABC):
    """Read contract for platform key material."""

    @abc.abstractmethod
    async def get_key_set(
        self,
        registration: PlatformRegistration,
        *,
        force_refresh: bool = False,
    ) -> List[KeyRecord]:
        """Return the platform's current public key records."""


# ---------------------------------------------------------------------
# JWKS over HTTP
# ---------------------------------------------------------------------

class JWKSKeyProvider(KeyProvider):
    """
    Key provider backed by the platform's JWKS URL.

    Parameters
    ----------
    timeout : float
        Seconds allowed for the whole key set request.
    cache_ttl_seconds : int
        How long a fetched key set is reused. 0 disables caching.
    client : Optional[httpx.AsyncClient]
        Shared client; one is created per request when omitted.
    """

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        cache_ttl_seconds: int = 300,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout = timeout
        self._cache_ttl = cache_ttl_seconds
        self._client = client
        self._cache: Dict[str, Tuple[float, List[KeyRecord]]] = {}

    async def get_key_set(
        self,
        registration: PlatformRegistration,
        *,
        force_refresh: bool = False,
    ) -> List[KeyRecord]:
        url = registration.jwks_url
        if not url:
            raise KeyFetchError(f"No key set URL configured for {registration.issuer}")

        if not force_refresh and self._cache_ttl > 0:
            cached = self._cache.get(url)
            if cached is not None and time.monotonic() - cached[0] < self._cache_ttl:
                return cached[1]

        keys = await self._fetch(url)
        self._cache[url] = (time.monotonic(), keys)
        return keys

    def clear(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch(self, url: str) -> List[KeyRecord]:
        try:
            if self._client is not None:
                resp = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.get(url)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as exc:
            raise KeyFetchError(f"Timed out fetching key set from {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise KeyFetchError(
                f"Key set request to {url} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise KeyFetchError(
                f"Key set request to {url} failed: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise KeyFetchError(f"Key set from {url} is not valid JSON") from exc

        keys = _parse_key_set(payload)
        logger.debug("Fetched %d key(s) from %s", len(keys), url)
        return keys


def _parse_key_set(payload: Any) -> List[KeyRecord]:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("keys"), list):
        raise KeyFetchError("Key set document has no 'keys' list")

    keys: List[KeyRecord] = []
    for record in payload["keys"]:
        if not isinstance(record, Mapping) or not record.get("kty"):
            raise KeyFetchError("Key set contains a record without 'kty'")
        keys.append(dict(record))
    return keys


# ---------------------------------------------------------------------
# Key selection
# ---------------------------------------------------------------------

def select_key(
    keys: List[KeyRecord],
    kid: Optional[str],
    alg: Optional[str] = None,
) -> jwt.PyJWK:
    """
    Return the key whose `kid` equals `kid`.

    A record without its own `alg` takes the header `alg` when that is one of
    `ALLOWED_ALGORITHMS`. A record that declares `alg` keeps it, so a header
    naming a different algorithm fails at signature verification.

    Raises
    ------
    UnknownKeyError
        If `kid` is missing or no record carries it.
    KeyFetchError
        If the matching record is not a usable public key.
    """
    if not kid:
        raise UnknownKeyError("Assertion header carries no 'kid'")

    for record in keys:
        if record.get("kid") == kid:
            try:
                algorithm = None
                if not record.get("alg") and alg in ALLOWED_ALGORITHMS:
                    algorithm = alg
                return jwt.PyJWK(record, algorithm=algorithm)
            except jwt.PyJWTError as exc:
                raise KeyFetchError(
                    f"Key {kid!r} is not a usable public key: {exc}"
                ) from exc

    raise UnknownKeyError(f"Key {kid!r} not found in platform key set")
