import base64
import hashlib
import hmac
import json
import time
from dataclasses import replace

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from starlette.requests import Request

from testvault.shared.auth import TokenVerifier, claim_values, resolve_principal
from testvault.shared.config import RuntimeConfig
from testvault.shared.contracts import PermissionClass
from testvault.shared.errors import AuthorizationError


SIGNING_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
PUBLIC_PEM = (
    SIGNING_KEY.public_key()
    .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
    .decode("ascii")
)

CONFIG = RuntimeConfig(
    database_url="",
    max_report_bytes=1024 * 1024,
    list_max_limit=1000,
    auth_enabled=True,
    auth_issuer="",
    auth_audiences=(),
    auth_public_key_pem=PUBLIC_PEM,
    auth_algorithms=("HS256", "RS256"),
    auth_jwt_shared_secret="factory-secret",
    auth_permission_claim="permission",
    auth_model_claims=("models", "model"),
)


def test_auth_disabled_ignores_credentials() -> None:
    config = replace(CONFIG, auth_enabled=False)
    principal = resolve_principal(_request(_mint({"sub": "line-3", "permission": "sync"})), config=config)
    assert principal.permission == PermissionClass.UNAUTHENTICATED
    assert principal.authorized_models == frozenset()


def test_no_authorization_header_is_anonymous() -> None:
    assert resolve_principal(_request(None), config=CONFIG).permission == PermissionClass.UNAUTHENTICATED


def test_sync_client_token_maps_to_principal() -> None:
    token = _mint({"sub": "line-3", "permission": "Sync", "models": ["860-00014", " 860-00015 ", ""]})
    principal = resolve_principal(_request(token), config=CONFIG)
    assert principal.identity == "line-3"
    assert principal.permission == PermissionClass.SYNC
    assert principal.authorized_models == frozenset({"860-00014", "860-00015"})


def test_operator_token_signed_with_rsa_key() -> None:
    token = _mint({"sub": "auditor", "permission": "standard", "model": "860-00014"}, algorithm="RS256")
    principal = resolve_principal(_request(token), config=CONFIG)
    assert principal.permission == PermissionClass.STANDARD
    assert principal.authorized_models == frozenset({"860-00014"})


def test_rsa_token_signed_by_another_key_is_rejected() -> None:
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    token = _mint({"sub": "auditor", "permission": "standard"}, algorithm="RS256", rsa_key=other_key)
    with pytest.raises(AuthorizationError) as exc_info:
        resolve_principal(_request(token), config=CONFIG)
    assert exc_info.value.subcode == "invalid-token"


def test_token_without_permission_claim_cannot_act() -> None:
    principal = resolve_principal(_request(_mint({"sub": "visitor"})), config=CONFIG)
    assert principal.identity == "visitor"
    assert principal.permission == PermissionClass.UNAUTHENTICATED


@pytest.mark.parametrize(
    "claims, secret",
    [
        ({"sub": "line-3", "permission": "sync"}, "stolen-secret"),
        ({"sub": "line-3", "permission": "sync", "exp": 1000}, "factory-secret"),
        ({"sub": "line-3", "permission": "root"}, "factory-secret"),
        ({"permission": "sync"}, "factory-secret"),
        ({"sub": "line-3", "permission": "sync", "nbf": time.time() + 3600}, "factory-secret"),
    ],
)
def test_rejected_tokens_are_auth_failures(claims, secret) -> None:
    with pytest.raises(AuthorizationError) as exc_info:
        resolve_principal(_request(_mint(claims, secret=secret)), config=CONFIG)
    assert exc_info.value.kind.value == "error-auth"
    assert exc_info.value.subcode == "invalid-token"


@pytest.mark.parametrize("header", ["Basic bGluZS0zOnB3", "Bearer", "Bearer not-a-jwt", "Bearer a.b.c"])
def test_unusable_credentials_are_rejected(header: str) -> None:
    request = Request({"type": "http", "headers": [(b"authorization", header.encode("ascii"))]})
    with pytest.raises(AuthorizationError):
        resolve_principal(request, config=CONFIG)


def test_algorithm_outside_allow_list_is_rejected() -> None:
    config = replace(CONFIG, auth_algorithms=("RS256",))
    with pytest.raises(AuthorizationError):
        resolve_principal(_request(_mint({"sub": "line-3", "permission": "sync"})), config=config)


def test_verifier_checks_issuer_and_audience() -> None:
    verifier = TokenVerifier(
        algorithms=("HS256",),
        shared_secret="factory-secret",
        issuer="https://vault.example",
        audiences=("testlog-api",),
    )
    good = _mint({"sub": "s", "iss": "https://vault.example", "aud": ["other", "testlog-api"]})
    assert verifier.verify(good)["sub"] == "s"

    with pytest.raises(AuthorizationError):
        verifier.verify(_mint({"sub": "s", "iss": "https://elsewhere.example", "aud": "testlog-api"}))
    with pytest.raises(AuthorizationError):
        verifier.verify(_mint({"sub": "s", "iss": "https://vault.example", "aud": "other"}))


def test_rsa_tokens_need_a_configured_key() -> None:
    verifier = TokenVerifier(algorithms=("RS256",))
    with pytest.raises(AuthorizationError) as exc_info:
        verifier.verify(_mint({"sub": "s"}, algorithm="RS256"))
    assert exc_info.value.subcode == "auth-unavailable"


def test_claim_values_accepts_strings_and_lists() -> None:
    claims = {"models": ["a", 3, " b "], "model": "c", "aud": None}
    assert claim_values(claims, ("models", "model", "aud", "missing")) == {"a", "b", "c"}


def _request(token: str | None) -> Request:
    headers = [] if token is None else [(b"authorization", f"Bearer {token}".encode("ascii"))]
    return Request({"type": "http", "headers": headers})


def _mint(
    claims: dict,
    *,
    algorithm: str = "HS256",
    secret: str = "factory-secret",
    rsa_key: rsa.RSAPrivateKey | None = None,
) -> str:
    body = {"exp": int(time.time()) + 600, **claims}
    encoded = [_segment({"alg": algorithm, "typ": "JWT"}), _segment(body)]
    signed = ".".join(encoded).encode("ascii")
    if algorithm == "HS256":
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).digest()
    else:
        signature = (rsa_key or SIGNING_KEY).sign(signed, padding.PKCS1v15(), hashes.SHA256())
    encoded.append(base64.urlsafe_b64encode(signature).decode("ascii").rstrip("="))
    return ".".join(encoded)


def _segment(value: dict) -> str:
    raw = json.dumps(value, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
