"""
permit_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables directly.

Architecture position:
    Configuration.  Sits above ``permit_kernel`` and below
    ``permit_services``.  The kernel MUST NEVER import from
    ``permit_config``; ``permit_services`` translates config objects into
    constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or malformed settings.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``permit_config_loaded`` log entry with the config id, version and
    checksum of the YAML source.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from permit_config.loader import load_yaml_file, parse_config
from permit_config.schema import (
    CredentialConfig,
    DatabaseConfig,
    PermitConfig,
    RealtimeConfig,
    RoutingConfig,
    SmsConfig,
)

_logger = logging.getLogger("permit_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> PermitConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Settings file.  Defaults to ``permit_config/defaults.yaml``.
        environ: Environment mapping for secrets and URL overrides.
            Defaults to ``os.environ``.

    Raises:
        FileNotFoundError, KeyError, ValueError, yaml.YAMLError.
    """
    source = path or DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    config = parse_config(load_yaml_file(source), env)

    _logger.info(
        "permit_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
            "sms_enabled": config.sms.enabled,
            "realtime_enabled": config.realtime.enabled,
            "signing_key_from_env": config.credentials.signing_key_from_env,
        },
    )
    if not config.credentials.signing_key_from_env:
        _logger.warning(
            "credential_signing_key_development_default",
            extra={"config_id": config.config_id},
        )
    return config


__all__ = [
    "CredentialConfig",
    "DatabaseConfig",
    "PermitConfig",
    "RealtimeConfig",
    "RoutingConfig",
    "SmsConfig",
    "get_active_config",
]
