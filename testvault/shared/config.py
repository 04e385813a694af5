from __future__ import annotations

import os
from dataclasses import dataclass


def get_env(name: str, default: str | None = None, required: bool = False) -> str:
    value = os.getenv(name, default)
    if required and (value is None or value == ""):
        raise RuntimeError(f"Missing required env var: {name}")
    return value or ""


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def get_env_csv(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default) or ""
    parts = [item.strip() for item in raw.split(",")]
    return tuple(item for item in parts if item)


@dataclass(frozen=True)
class RuntimeConfig:
    database_url: str
    max_report_bytes: int
    list_max_limit: int
    auth_enabled: bool
    auth_issuer: str
    auth_audiences: tuple[str, ...]
    auth_public_key_pem: str
    auth_algorithms: tuple[str, ...]
    auth_jwt_shared_secret: str
    auth_permission_claim: str
    auth_model_claims: tuple[str, ...]


def load_runtime_config() -> RuntimeConfig:
    return RuntimeConfig(
        database_url=get_env("DATABASE_URL", ""),
        max_report_bytes=max(1024, get_env_int("MAX_REPORT_BYTES", 1024 * 1024)),
        list_max_limit=max(1, get_env_int("LIST_MAX_LIMIT", 1000)),
        auth_enabled=get_env_bool("AUTH_ENABLED", False),
        auth_issuer=get_env("AUTH_ISSUER", ""),
        auth_audiences=get_env_csv("AUTH_AUDIENCE", ""),
        auth_public_key_pem=get_env("AUTH_PUBLIC_KEY_PEM", "").replace("\\n", "\n"),
        auth_algorithms=get_env_csv("AUTH_ALGORITHMS", "RS256"),
        auth_jwt_shared_secret=get_env("AUTH_JWT_SHARED_SECRET", ""),
        auth_permission_claim=get_env("AUTH_PERMISSION_CLAIM", "permission") or "permission",
        auth_model_claims=get_env_csv("AUTH_MODEL_CLAIMS", "models,model"),
    )
