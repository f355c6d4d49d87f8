"""Configuration file loading for hvissuer.

:class:`IssuerConfig` is a :class:`configkit.ConfigKit` singleton.  The
CLI creates it once from the YAML/JSON file given on the command line;
everything else reaches it through :func:`get_config`::

    IssuerConfig(config_file="/etc/hvissuer/config.yaml")

    cfg = get_config()
    cfg.settings.retrieve.poll_attempts
    cfg.get("issuer.timeout_seconds", default=30)

String values of the form ``${NAME}`` or ``${NAME:-fallback}`` are
replaced from the environment before the schema is applied, so secrets
and endpoints can be injected by the deployment.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from configkit import ConfigKit, ConfigKitMeta

from hvissuer.config.settings import HvissuerSettings, build_settings

log = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

# Whole-value references only: "${NAME}" or "${NAME:-fallback}".
_ENV_REF = re.compile(r"^\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*))?\}$", re.DOTALL)

_instance: IssuerConfig | None = None


class ConfigValidationError(Exception):
    """One or more semantic problems were found in the configuration.

    All problems are collected before raising so the operator can fix
    them in a single pass; they are available as :attr:`errors`.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        listing = "\n".join(f"  - {problem}" for problem in errors)
        super().__init__(f"Invalid hvissuer configuration:\n{listing}")


def get_config() -> IssuerConfig:
    """Return the loaded configuration.

    Raises
    ------
    RuntimeError
        If no :class:`IssuerConfig` has been created in this process.

    """
    if _instance is None:
        msg = "Configuration not initialised; create IssuerConfig(config_file=...) first"
        raise RuntimeError(msg)
    return _instance


def _expand_env(value: Any, location: str) -> Any:  # noqa: ANN401
    """Return *value* with every ``${NAME}`` string replaced, recursively."""
    if isinstance(value, dict):
        return {
            key: _expand_env(item, f"{location}.{key}" if location else str(key))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_expand_env(item, f"{location}[{i}]") for i, item in enumerate(value)]
    if not isinstance(value, str):
        return value

    ref = _ENV_REF.match(value)
    if ref is None:
        return value
    name = ref.group("name")
    if name in os.environ:
        return os.environ[name]
    if ref.group("fallback") is not None:
        return ref.group("fallback")
    raise ConfigValidationError(
        [f"{location}: environment variable {name} is not set and no fallback is given"],
    )


class IssuerConfig(ConfigKit):
    """The hvissuer configuration, validated against the bundled schema.

    ``settings`` holds the typed, frozen view; ``data`` and ``get()``
    expose the raw mapping.
    """

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        # schema_file is accepted for ConfigKitMeta's keyword check only;
        # the bundled schema is always used.
        global _instance  # noqa: PLW0603

        super().__init__(config_file=config_file, schema_file=_SCHEMA_PATH)
        self._settings: HvissuerSettings = build_settings(self.data)
        _instance = self

    def _load(self) -> None:
        super()._load()
        self._data = _expand_env(self._data, "")

    @property
    def settings(self) -> HvissuerSettings:
        return self._settings

    def additional_checks(self) -> None:
        """Checks the JSON schema cannot express.

        ConfigKit calls this once the schema has accepted the document.
        Hard problems raise :class:`ConfigValidationError`; questionable
        but workable combinations are only logged.
        """
        problems: list[str] = []

        issuer = self.data.get("issuer") or {}
        url = issuer.get("url", "")
        if not url.lower().startswith("https://"):
            problems.append(f"issuer.url must be an https:// URL (got '{url}')")
        if url.endswith("/"):
            problems.append(f"issuer.url must not end with '/' (got '{url}')")
        bundle = issuer.get("ca_cert_path")
        if bundle and not Path(bundle).is_file():
            problems.append(f"issuer.ca_cert_path '{bundle}' does not exist")

        validity = self.data.get("validity") or {}
        mode = validity.get("not_after", "sentinel")
        duration = validity.get("duration_seconds")
        if mode == "duration" and (duration is None or duration <= 0):
            problems.append(
                "validity.duration_seconds must be a positive integer "
                "when validity.not_after is 'duration'",
            )
        elif mode != "duration" and duration is not None:
            log.warning(
                "Config warning: validity.duration_seconds is set but "
                "validity.not_after is '%s'; the duration is ignored",
                mode,
            )

        retrieve = self.data.get("retrieve") or {}
        attempts = retrieve.get("poll_attempts", 1)
        interval = retrieve.get("poll_interval_seconds", 2.0)
        timeout = issuer.get("timeout_seconds", 30)
        if attempts > 1 and (attempts - 1) * interval >= timeout:
            log.warning(
                "Config warning: retrieve polling (%d attempts every %ss) can outlast "
                "issuer.timeout_seconds (%s); the call deadline will cut it short",
                attempts,
                interval,
                timeout,
            )

        if problems:
            raise ConfigValidationError(problems)

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded configuration.  Used by tests."""
        global _instance  # noqa: PLW0603
        _instance = None
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        return f"<IssuerConfig url={self._settings.issuer.url}>"
