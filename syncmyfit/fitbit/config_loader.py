"""Load, validate, and hot-reload the SyncMyFit protocol configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk without a restart.

Usage::

    from syncmyfit.fitbit.config_loader import get_sync_config

    config = get_sync_config()
    url = config.api.endpoint_url("sleep", date="2026-02-23")
    tag = config.writer.origin_tag                          # "Fitbit"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from syncmyfit.fitbit.base import Metric

logger = logging.getLogger("syncmyfit.fitbit.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

_REQUIRED_ENDPOINTS = ("profile", "activity_summary", "heart_rate_intraday", "sleep")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class ApiConfig:
    """Fitbit endpoint locations and OAuth scopes."""

    authorize_url: str
    token_url: str
    base_url: str
    scopes: list[str]
    endpoints: dict[str, str]

    def endpoint_url(self, name: str, **params: str) -> str:
        """Return the absolute URL of a named endpoint.

        Args:
            name:   Endpoint key from the ``api.endpoints`` section.
            params: Values for the path template (e.g. ``date``).

        Raises:
            KeyError: If the endpoint is not configured.
        """
        path = self.endpoints[name].format(**params)
        return f"{self.base_url.rstrip('/')}{path}"


@dataclass
class KeychainConfig:
    """Namespace of the token entries in the secure key-value store."""

    service: str
    access_token_account: str
    refresh_token_account: str
    expires_at_account: str


@dataclass
class SyncSection:
    """Sync orchestration policy."""

    required_metric: Metric
    failure_priority: list[Metric]
    status_reset_seconds: float
    status_service: str
    last_synced_account: str


@dataclass
class WriterConfig:
    """Origin tagging for samples written to the health sink."""

    origin_key: str
    origin_tag: str

    @property
    def origin_metadata(self) -> dict[str, str]:
        return {self.origin_key: self.origin_tag}


@dataclass
class SyncConfig:
    """Complete, validated protocol configuration.

    Attributes:
        version:  Config schema version string.
        api:      Fitbit endpoints and scopes.
        keychain: Secure store service/account names for the token record.
        sync:     Orchestration policy.
        writer:   Origin tagging for written samples.
    """

    version: str
    api: ApiConfig
    keychain: KeychainConfig
    sync: SyncSection
    writer: WriterConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _metric(value: Any, where: str, errors: list[str]) -> Metric | None:
    try:
        return Metric(value)
    except ValueError:
        errors.append(f"{where}: unknown metric {value!r}")
        return None


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _require(d: dict, key: str, section: str) -> Any:
        if key not in d or d[key] in (None, ""):
            errors.append(f"Missing required key '{key}' in section '{section}'")
            return ""
        return d[key]

    version = str(raw.get("version", "1.0"))

    # ── API ──
    api_raw = raw.get("api") or {}
    if not api_raw:
        errors.append("'api' section is missing or empty")
    endpoints_raw = api_raw.get("endpoints") or {}
    if not isinstance(endpoints_raw, dict):
        errors.append("api.endpoints must be a mapping of name→path")
        endpoints_raw = {}
    for name in _REQUIRED_ENDPOINTS:
        if name not in endpoints_raw:
            errors.append(f"api.endpoints.{name} is not configured")
    scopes = api_raw.get("scopes") or []
    if isinstance(scopes, str):
        scopes = scopes.split()
    if not scopes:
        errors.append("api.scopes must list at least one scope")
    api = ApiConfig(
        authorize_url=_require(api_raw, "authorize_url", "api"),
        token_url=_require(api_raw, "token_url", "api"),
        base_url=_require(api_raw, "base_url", "api"),
        scopes=[str(s) for s in scopes],
        endpoints={str(k): str(v) for k, v in endpoints_raw.items()},
    )

    # ── Keychain ──
    kc_raw = raw.get("keychain") or {}
    keychain = KeychainConfig(
        service=kc_raw.get("service", "com.syncmyfit.token"),
        access_token_account=kc_raw.get("access_token_account", "fitbit_access_token"),
        refresh_token_account=kc_raw.get("refresh_token_account", "fitbit_refresh_token"),
        expires_at_account=kc_raw.get("expires_at_account", "fitbit_token_expires_at"),
    )
    accounts = {
        keychain.access_token_account,
        keychain.refresh_token_account,
        keychain.expires_at_account,
    }
    if len(accounts) != 3:
        errors.append("keychain accounts must be three distinct names")

    # ── Sync policy ──
    sync_raw = raw.get("sync") or {}
    required = _metric(sync_raw.get("required_metric", "steps"), "sync.required_metric", errors)
    priority: list[Metric] = []
    for value in sync_raw.get("failure_priority") or [m.value for m in Metric]:
        metric = _metric(value, "sync.failure_priority", errors)
        if metric is not None:
            priority.append(metric)
    missing = set(Metric) - set(priority)
    if missing:
        errors.append(
            "sync.failure_priority must rank every metric; missing: "
            + ", ".join(sorted(m.value for m in missing))
        )
    try:
        reset_seconds = float(sync_raw.get("status_reset_seconds", 2.0))
    except (TypeError, ValueError):
        errors.append("sync.status_reset_seconds must be a number")
        reset_seconds = 2.0
    if reset_seconds < 0:
        errors.append(f"sync.status_reset_seconds = {reset_seconds} must not be negative")
    sync = SyncSection(
        required_metric=required or Metric.STEPS,
        failure_priority=priority,
        status_reset_seconds=reset_seconds,
        status_service=sync_raw.get("status_service", "com.syncmyfit.status"),
        last_synced_account=sync_raw.get("last_synced_account", "last_sync_time"),
    )

    # ── Writer ──
    wr_raw = raw.get("writer") or {}
    writer = WriterConfig(
        origin_key=_require(wr_raw, "origin_key", "writer"),
        origin_tag=_require(wr_raw, "origin_tag", "writer"),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        api=api,
        keychain=keychain,
        sync=sync,
        writer=writer,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Cached instance with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the cached SyncConfig, loading it on first call.  Thread-safe."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the cached instance.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
