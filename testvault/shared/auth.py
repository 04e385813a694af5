"""
Caller identity for the test log API.

Sync clients and operators present a bearer JWT. The token names the caller
(``sub``), its permission class and the device models it may see. Tokens are
checked either with a shared HMAC secret (HS256) or against one configured
RSA public key (RS256); there is no key discovery over the network.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from fastapi import Request

from testvault.shared.config import RuntimeConfig
from testvault.shared.contracts import ANONYMOUS, PermissionClass, Principal
from testvault.shared.errors import AuthorizationError


CLOCK_LEEWAY_SECONDS = 30


class AuthBackendError(AuthorizationError):
    """Token verification is not configured for the presented algorithm."""


def _invalid_token(detail: str) -> AuthorizationError:
    return AuthorizationError(f"Invalid token: {detail}", subcode="invalid-token")


class TokenVerifier:
    def __init__(
        self,
        *,
        algorithms: tuple[str, ...],
        shared_secret: str = "",
        public_key_pem: str = "",
        issuer: str = "",
        audiences: tuple[str, ...] = (),
    ):
        self.algorithms = frozenset(algorithms or ("RS256",))
        self.issuer = issuer
        self.audiences = frozenset(audiences)
        self._secret = shared_secret.encode("utf-8") if shared_secret else b""
        self._public_key = load_rsa_public_key(public_key_pem) if public_key_pem else None

    def verify(self, token: str) -> dict[str, Any]:
        segments = token.split(".")
        if len(segments) != 3:
            raise _invalid_token("expected header.payload.signature")
        header = _json_segment(segments[0], "header")
        claims = _json_segment(segments[1], "payload")
        signature = _segment_bytes(segments[2], "signature")

        algorithm = str(header.get("alg") or "")
        if algorithm not in self.algorithms:
            raise _invalid_token(f"algorithm {algorithm or 'none'} is not accepted")
        self._check_signature(algorithm, f"{segments[0]}.{segments[1]}".encode("ascii"), signature)
        self._check_claims(claims)
        return claims

    def _check_signature(self, algorithm: str, signed: bytes, signature: bytes) -> None:
        if algorithm == "HS256":
            if not self._secret:
                raise AuthBackendError("AUTH_JWT_SHARED_SECRET is required for HS256 tokens", subcode="auth-unavailable")
            expected = hmac.new(self._secret, signed, hashlib.sha256).digest()
            if not hmac.compare_digest(expected, signature):
                raise _invalid_token("signature mismatch")
        elif algorithm == "RS256":
            if self._public_key is None:
                raise AuthBackendError("AUTH_PUBLIC_KEY_PEM is required for RS256 tokens", subcode="auth-unavailable")
            try:
                self._public_key.verify(signature, signed, padding.PKCS1v15(), hashes.SHA256())
            except InvalidSignature as exc:
                raise _invalid_token("signature mismatch") from exc
        else:
            raise _invalid_token(f"algorithm {algorithm} is not supported")

    def _check_claims(self, claims: dict[str, Any]) -> None:
        now = time.time()
        expires = claims.get("exp")
        if not isinstance(expires, (int, float)):
            raise _invalid_token("exp claim is required")
        if now - CLOCK_LEEWAY_SECONDS > expires:
            raise _invalid_token("expired")
        not_before = claims.get("nbf")
        if isinstance(not_before, (int, float)) and now + CLOCK_LEEWAY_SECONDS < not_before:
            raise _invalid_token("not yet valid")

        if self.issuer and claims.get("iss") != self.issuer:
            raise _invalid_token("issuer mismatch")
        if self.audiences and not claim_values(claims, ("aud",)) & self.audiences:
            raise _invalid_token("audience mismatch")


def load_rsa_public_key(pem: str) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem.encode("ascii"))
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("AUTH_PUBLIC_KEY_PEM must hold an RSA public key")
    return key


@lru_cache(maxsize=8)
def verifier_for(config: RuntimeConfig) -> TokenVerifier:
    return TokenVerifier(
        algorithms=config.auth_algorithms,
        shared_secret=config.auth_jwt_shared_secret,
        public_key_pem=config.auth_public_key_pem,
        issuer=config.auth_issuer,
        audiences=config.auth_audiences,
    )


def resolve_principal(request: Request, *, config: RuntimeConfig) -> Principal:
    """Principal for the request; anonymous when auth is off or no token is sent."""
    if not config.auth_enabled:
        return ANONYMOUS

    authorization = request.headers.get("authorization", "").strip()
    if not authorization:
        return ANONYMOUS
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _invalid_token("expected bearer credentials")

    claims = verifier_for(config).verify(token.strip())
    identity = str(claims.get("sub") or "").strip()
    if not identity:
        raise _invalid_token("sub claim is required")

    return Principal(
        identity=identity,
        permission=permission_from_claims(claims, config.auth_permission_claim),
        authorized_models=frozenset(claim_values(claims, config.auth_model_claims)),
    )


def permission_from_claims(claims: dict[str, Any], claim_name: str) -> PermissionClass:
    raw = claims.get(claim_name)
    if raw is None:
        return PermissionClass.UNAUTHENTICATED
    try:
        return PermissionClass(str(raw).strip().lower())
    except ValueError as exc:
        raise _invalid_token(f"unknown permission {raw!r}") from exc


def claim_values(claims: dict[str, Any], claim_names: tuple[str, ...]) -> set[str]:
    """Non-blank strings from claims that may hold one string or a list."""
    values: set[str] = set()
    for name in claim_names:
        raw = claims.get(name)
        items = [raw] if isinstance(raw, str) else raw if isinstance(raw, list) else []
        values.update(item.strip() for item in items if isinstance(item, str) and item.strip())
    return values


def _segment_bytes(segment: str, part: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError) as exc:
        raise _invalid_token(f"{part} is not base64url") from exc


def _json_segment(segment: str, part: str) -> dict[str, Any]:
    try:
        value = json.loads(_segment_bytes(segment, part))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise _invalid_token(f"{part} is not JSON") from exc
    if not isinstance(value, dict):
        raise _invalid_token(f"{part} must be a JSON object")
    return value
