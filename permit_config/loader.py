"""
Configuration Loader (``permit_config.loader``).

Responsibility
--------------
Loads the YAML settings file and parses each section into the frozen
``permit_config.schema`` dataclasses, resolving secrets from the
environment mapping it is handed.  The single public entry point for
runtime config is ``permit_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` covers the YAML source only, never resolved
  secrets, and is deterministic.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from permit_config.schema import (
    REDIS_DISABLED_URL,
    CredentialConfig,
    DatabaseConfig,
    PermitConfig,
    RealtimeConfig,
    RoutingConfig,
    SmsConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _env(environ: Mapping[str, str], name: str | None) -> str | None:
    if not name:
        return None
    value = environ.get(name, "").strip()
    return value or None


def _positive(value: Any, name: str) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return number


def parse_routing(data: dict[str, Any]) -> RoutingConfig:
    suffix = str(data.get("default_block_suffix", "d")).lower()
    if suffix not in ("d", "e", "w"):
        raise ValueError(f"default_block_suffix must be d, e or w, got {suffix!r}")
    return RoutingConfig(
        email_domain=data["email_domain"],
        default_block_suffix=suffix,
    )


_TRUTHY = frozenset({"1", "true", "yes", "on"})


def parse_credentials(data: dict[str, Any], environ: Mapping[str, str]) -> CredentialConfig:
    """
    Resolve the credential signing key.

    The key comes from the environment.  The development key shipped in
    the YAML is only used when the ``allow_development_key_env`` variable
    is explicitly switched on; otherwise a missing key is an error.
    """
    key_env = data["signing_key_env"]
    env_key = _env(environ, key_env)
    key = env_key
    if key is None:
        allow_env = data.get("allow_development_key_env")
        allowed = (_env(environ, allow_env) or "").lower() in _TRUTHY
        if not allowed:
            raise ValueError(
                f"credential signing key missing: set {key_env}"
                + (f" (or {allow_env}=1 for local development)" if allow_env else "")
            )
        key = data.get("development_signing_key")
        if not key:
            raise ValueError("development_signing_key is not configured")
    return CredentialConfig(
        outgoing_valid_hours=_positive(data["outgoing_valid_hours"], "outgoing_valid_hours"),
        return_valid_hours=_positive(data["return_valid_hours"], "return_valid_hours"),
        signing_key=key.encode("utf-8"),
        signing_key_from_env=env_key is not None,
    )


def parse_sms(data: dict[str, Any], environ: Mapping[str, str]) -> SmsConfig:
    country_code = str(data["default_country_code"])
    if not country_code.startswith("+") or not country_code[1:].isdigit():
        raise ValueError(f"default_country_code must look like +91, got {country_code!r}")
    return SmsConfig(
        api_base_url=str(data["api_base_url"]).rstrip("/"),
        default_country_code=country_code,
        max_body_length=_positive(data["max_body_length"], "max_body_length"),
        timeout_seconds=float(data["timeout_seconds"]),
        max_attempts=_positive(data.get("max_attempts", 3), "max_attempts"),
        account_sid=_env(environ, data.get("account_sid_env")),
        auth_token=_env(environ, data.get("auth_token_env")),
        from_number=_env(environ, data.get("from_number_env")),
        messaging_service_sid=_env(environ, data.get("messaging_service_sid_env")),
    )


def parse_realtime(data: dict[str, Any], environ: Mapping[str, str]) -> RealtimeConfig:
    url = _env(environ, data.get("redis_url_env")) or data.get("default_redis_url")
    if not url or url.strip().lower() == REDIS_DISABLED_URL:
        url = None
    return RealtimeConfig(
        redis_url=url.strip() if url else None,
        channel_prefix=data["channel_prefix"],
    )


def parse_database(data: dict[str, Any], environ: Mapping[str, str]) -> DatabaseConfig:
    return DatabaseConfig(
        url=_env(environ, data.get("url_env")) or data["default_url"],
        echo=bool(data.get("echo", False)),
    )


def parse_config(data: dict[str, Any], environ: Mapping[str, str]) -> PermitConfig:
    return PermitConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        routing=parse_routing(data["routing"]),
        credentials=parse_credentials(data["credentials"], environ),
        sms=parse_sms(data["sms"], environ),
        realtime=parse_realtime(data["realtime"], environ),
        database=parse_database(data["database"], environ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
