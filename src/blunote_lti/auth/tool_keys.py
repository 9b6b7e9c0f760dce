"""
Tool Key Publication

Loads this tool's RSA signing key and publishes its public half as a JWKS
document, in the shape platforms expect at the tool's public JWK URL.
"""

from __future__ import annotations

import base64
import hashlib
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..core.errors import ConfigurationError


def _int_to_b64(value: int) -> str:
    size = (value.bit_length() + 7) // 8
    return base64.urlsafe_b64encode(value.to_bytes(size, "big")).rstrip(b"=").decode()


def derive_kid(modulus: int) -> str:
    payload = modulus.to_bytes((modulus.bit_length() + 7) // 8, "big")
    digest = hashlib.sha256(payload).digest()
    return base64.urlsafe_b64encode(digest[:8]).rstrip(b"=").decode()


def generate_private_key_pem(key_size: int = 2048) -> str:
    """New RSA private key as unencrypted PKCS#8 PEM, for LTI_TOOL_PRIVATE_KEY."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


class ToolKeySet:
    """
    The tool's own key material.

    Parameters
    ----------
    private_key_pem : Optional[str]
        PEM-encoded RSA private key. Literal `\\n` sequences (as found in
        single-line environment variables) are accepted. None publishes an
        empty key set.
    key_id : Optional[str]
        Explicit `kid`; derived from the modulus when omitted.
    """

    def __init__(self, private_key_pem: Optional[str], key_id: Optional[str] = None) -> None:
        self._private_key: Optional[rsa.RSAPrivateKey] = None
        if private_key_pem:
            normalized = private_key_pem.replace("\\n", "\n").encode("utf-8")
            try:
                key = serialization.load_pem_private_key(normalized, password=None)
            except (ValueError, TypeError) as exc:
                raise ConfigurationError("LTI tool private key is not a valid PEM key") from exc
            if not isinstance(key, rsa.RSAPrivateKey):
                raise ConfigurationError("LTI tool private key must be an RSA key")
            self._private_key = key
        self._key_id = key_id

    @property
    def configured(self) -> bool:
        return self._private_key is not None

    @property
    def key_id(self) -> Optional[str]:
        if self._key_id:
            return self._key_id
        if self._private_key is None:
            return None
        return derive_kid(self._private_key.public_key().public_numbers().n)

    def public_jwk(self) -> Optional[Dict[str, Any]]:
        if self._private_key is None:
            return None
        numbers = self._private_key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "use": "sig",
            "alg": "RS256",
            "kid": self.key_id,
            "n": _int_to_b64(numbers.n),
            "e": _int_to_b64(numbers.e),
        }

    def jwks(self) -> Dict[str, List[Dict[str, Any]]]:
        jwk = self.public_jwk()
        return {"keys": [jwk] if jwk else []}


def build_tool_configuration(tool_url: str, title: str, jwks_url: Optional[str] = None) -> Dict[str, Any]:
    """Canvas-style LTI 1.3 developer key configuration for this tool."""
    base = tool_url.rstrip("/")
    launch_url = f"{base}/lti/launch"
    return {
        "title": title,
        "description": "AI-powered study assistant",
        "oidc_initiation_url": f"{base}/lti/oidc/login",
        "target_link_uri": launch_url,
        "public_jwk_url": jwks_url or f"{base}/lti/.well-known/jwks.json",
        "scopes": [],
        "extensions": [
            {
                "platform": "canvas.instructure.com",
                "privacy_level": "public",
                "settings": {
                    "placements": [
                        {
                            "placement": "course_navigation",
                            "message_type": "LtiResourceLinkRequest",
                            "target_link_uri": launch_url,
                            "text": title,
                            "icon_url": f"{base}/icon.png",
                        },
                    ],
                },
            },
        ],
    }
