"""Configuration subsystem for hvissuer.

Public API::

    from hvissuer.config import get_config, IssuerConfig

    # At startup (CLI only):
    IssuerConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    url = cfg.settings.issuer.url          # typed access
"""

from hvissuer.config.issuer_config import (
    ConfigValidationError,
    IssuerConfig,
    get_config,
)
from hvissuer.config.settings import (
    DEFAULT_SETTINGS,
    HealthCheckSettings,
    HvissuerSettings,
    IssuerSettings,
    LoggingSettings,
    RetrieveSettings,
    SecretKeySettings,
    ValiditySettings,
    build_settings,
)

__all__ = [
    "DEFAULT_SETTINGS",
    "ConfigValidationError",
    "HealthCheckSettings",
    "HvissuerSettings",
    "IssuerConfig",
    "IssuerSettings",
    "LoggingSettings",
    "RetrieveSettings",
    "SecretKeySettings",
    "ValiditySettings",
    "build_settings",
    "get_config",
]
