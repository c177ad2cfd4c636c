"""
Permit configuration schema.

Frozen dataclasses produced by ``permit_config.loader`` from YAML plus the
environment.  Components receive these objects by constructor injection;
none of them reads files or environment variables itself.
"""

from __future__ import annotations

from dataclasses import dataclass

REDIS_DISABLED_URL = "memory://"


@dataclass(frozen=True)
class RoutingConfig:
    email_domain: str
    default_block_suffix: str = "d"


@dataclass(frozen=True)
class CredentialConfig:
    outgoing_valid_hours: int
    return_valid_hours: int
    signing_key: bytes
    signing_key_from_env: bool = False


@dataclass(frozen=True)
class SmsConfig:
    """Twilio settings; the gateway is disabled when credentials are missing."""

    api_base_url: str
    default_country_code: str
    max_body_length: int
    timeout_seconds: float
    max_attempts: int = 3
    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    messaging_service_sid: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(
            self.account_sid
            and self.auth_token
            and (self.from_number or self.messaging_service_sid)
        )


@dataclass(frozen=True)
class RealtimeConfig:
    redis_url: str | None
    channel_prefix: str

    @property
    def enabled(self) -> bool:
        return self.redis_url is not None


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False


@dataclass(frozen=True)
class PermitConfig:
    """The complete runtime configuration."""

    config_id: str
    version: int
    routing: RoutingConfig
    credentials: CredentialConfig
    sms: SmsConfig
    realtime: RealtimeConfig
    database: DatabaseConfig
    checksum: str
