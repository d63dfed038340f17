"""
provisioner.core.config - Configuration Management
==================================================

Configuration is resolved once, before orchestration starts, and then passed
down to every component by the Provisioner facade. The orchestrator never
resolves configuration itself.

Precedence (highest first):

    1. Command-line overrides          (provisioner run --url ...)
    2. Managed preferences             (MDM profile, /Library/Managed Preferences)
    3. YAML configuration file         (provisioner.yaml / --config FILE)
    4. Environment variables           (PROVISIONER_*)
    5. Default values defined below

Layers 1-3 are merged into constructor arguments, so pydantic-settings only
consults the environment for keys none of them set.

Architecture Context:

    ProvisionerConfig
        ├── PathsConfig     → StatusStore, DownloadCache, logging
        ├── ProgressConfig  → DialogProgressReporter
        ├── ServiceConfig   → ServiceRegistrar, RebootScheduler
        └── (run settings)  → ArtifactFetcher, PhaseOrchestrator, facade

Environment Variables:
    PROVISIONER_MANIFEST_URL=https://example.com/bootstrap.json
    PROVISIONER_AUTH_HEADER="Basic dXNlcjpwYXNz"
    PROVISIONER_DRY_RUN=true
    PROVISIONER_PATHS__CACHE_DIR=/private/tmp/provisioner-cache
"""

from __future__ import annotations

import plistlib
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

from provisioner.core.constants import DEFAULT_IDENTIFIER
from provisioner.core.exceptions import ConfigurationError

logger = structlog.get_logger()


# =============================================================================
# Filesystem Layout
# =============================================================================
class PathsConfig(BaseModel):
    """Where Provisioner keeps its payloads, logs and status files."""

    support_dir: Path = Field(
        default=Path("/Library/Provisioner"),
        description="Root of Provisioner's working files",
    )
    cache_dir: Path = Field(
        default=Path("/Library/Provisioner/cache"),
        description="Relative item paths resolve here; purged after success",
    )
    log_dir: Path = Field(
        default=Path("/Library/Provisioner/logs"),
        description="Directory for per-session log files",
    )
    status_plist: Path = Field(
        default=Path("/Library/Provisioner/status.plist"),
        description="Structured phase status record",
    )
    status_json: Path = Field(
        default=Path("/Library/Provisioner/status.json"),
        description="Machine-readable mirror of the phase status record",
    )
    completion_marker: Path = Field(
        default=Path(f"/Library/Preferences/{DEFAULT_IDENTIFIER}.plist"),
        description="Last-successful-run marker read by pre-run gates",
    )
    managed_preferences_dir: Path = Field(
        default=Path("/Library/Managed Preferences"),
        description="Directory of MDM-delivered preference plists",
    )


# =============================================================================
# Progress UI
# =============================================================================
class ProgressConfig(BaseModel):
    """Settings for the optional progress window."""

    enabled: bool = Field(
        default=True,
        description="Drive the progress window when its binary is installed",
    )
    dialog_binary: Path = Field(
        default=Path("/usr/local/bin/dialog"),
        description="Progress window executable",
    )
    command_file: Path = Field(
        default=Path("/var/tmp/dialog.log"),
        description="Command file the progress window watches",
    )
    title: str = Field(
        default="Setting up your Mac",
        description="Window title",
    )


# =============================================================================
# launchd Service
# =============================================================================
class ServiceConfig(BaseModel):
    """Settings for re-registration as a launchd job and for reboots."""

    enabled: bool = Field(
        default=True,
        description="Register the LaunchDaemon after a run",
    )
    identifier: str = Field(
        default=DEFAULT_IDENTIFIER,
        description="launchd label of the daemon (and agent)",
    )
    executable_path: str = Field(
        default="/usr/local/bin/provisioner",
        description="Program launchd starts",
    )
    launch_daemons_dir: Path = Field(
        default=Path("/Library/LaunchDaemons"),
        description="Where the daemon plist is written",
    )
    launch_agents_dir: Path = Field(
        default=Path("/Library/LaunchAgents"),
        description="Where the per-user agent plist is written",
    )
    register_agent: bool = Field(
        default=False,
        description="Also install a LaunchAgent running --userscript for the console user",
    )
    reboot_delay: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between run completion and the restart",
    )


# =============================================================================
# Main Configuration
# =============================================================================
class ProvisionerConfig(BaseSettings):
    """Top-level configuration for a Provisioner run.

    Attributes:
        manifest_url: Manifest source (http(s) URL, file:// URL or path).
        auth_header: Value of the Authorization header for every request.
        follow_redirects: Default redirect policy for manifest and items.
        dry_run: Log intent only; no downloads, installs or scripts.
        reboot: Restart the machine after a successful run.
        userscript_only: Run only the userland user scripts.
        retain_cache: Keep the cache directory after a successful run.
        silent: Suppress console logging.
        verbose: Debug-level logging.
        manifest_timeout: Upper bound on the manifest fetch, seconds.
        download_timeout: Upper bound on one item download, seconds.
        block_userland_on_setup_failure: Skip userland if setup failed.
        run_userscripts_as_console_user: Launch userland user scripts as
            the logged-in user instead of root.
        status_retention_days: Remove finished phase records older than
            this many days once the run has finished (None keeps everything).
        wait_for_writable: Wait for the support directory to become
            writable before touching status files.

    Example:
        >>> config = ProvisionerConfig(
        ...     manifest_url="https://example.com/bootstrap.json",
        ...     dry_run=True,
        ... )
    """

    # -------------------------------------------------------------------------
    # Run Settings
    # -------------------------------------------------------------------------
    manifest_url: Optional[str] = Field(
        default=None,
        description="Manifest source URL or path",
    )
    auth_header: Optional[str] = Field(
        default=None,
        description="Authorization header value for manifest and item requests",
    )
    follow_redirects: bool = Field(
        default=False,
        description="Follow HTTP redirects unless an item says otherwise",
    )
    dry_run: bool = Field(default=False, description="Log intent without side effects")
    reboot: bool = Field(default=False, description="Restart after a successful run")
    userscript_only: bool = Field(default=False, description="Run only user scripts")
    retain_cache: bool = Field(default=False, description="Keep cached payloads")
    silent: bool = Field(default=False, description="No console log output")
    verbose: bool = Field(default=False, description="Debug logging")
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )
    manifest_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Manifest fetch timeout in seconds",
    )
    download_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Per-item download timeout in seconds",
    )
    block_userland_on_setup_failure: bool = Field(
        default=True,
        description="Do not enter userland when the setup phase failed",
    )
    run_userscripts_as_console_user: bool = Field(
        default=False,
        description="Run userland user scripts as the console user",
    )
    status_retention_days: Optional[int] = Field(
        default=None,
        ge=0,
        description="Drop finished phase records older than this many days",
    )
    wait_for_writable: bool = Field(
        default=True,
        description="Wait for a writable support directory before the run",
    )
    managed_domains: list[str] = Field(
        default_factory=lambda: list(MANAGED_DOMAINS),
        description="Managed preference domains, highest priority first",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    paths: PathsConfig = Field(default_factory=PathsConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    model_config = {
        "env_prefix": "PROVISIONER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level.upper()


# =============================================================================
# Managed Preferences
# =============================================================================
# MDM profiles land as plists named after their preference domain. Older
# profiles use other key spellings; they are folded onto config field names
# case-insensitively. Unknown keys are dropped.
# =============================================================================
MANAGED_DOMAINS = (
    DEFAULT_IDENTIFIER,
    "io.macadmins.provisioner",
    "io.macadmins.installapplications",
)

MANAGED_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "manifest_url": ("manifest_url", "jsonurl", "manifesturl", "configurl", "url"),
    "auth_header": ("auth_header", "headers", "authorizationheader", "authheader"),
    "follow_redirects": ("follow_redirects", "followredirects"),
    "dry_run": ("dry_run", "dryrun"),
    "reboot": ("reboot",),
    "userscript_only": ("userscript_only", "userscript", "userscriptonly"),
    "retain_cache": ("retain_cache", "retaincache"),
    "silent": ("silent",),
    "verbose": ("verbose",),
}

_ALIAS_LOOKUP = {
    alias: field for field, aliases in MANAGED_KEY_ALIASES.items() for alias in aliases
}


def normalize_managed_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Map managed-preference keys onto ProvisionerConfig field names."""
    normalized: dict[str, Any] = {}
    for key, value in raw.items():
        field = _ALIAS_LOOKUP.get(key.lower())
        if field is None:
            continue
        if field == "auth_header" and isinstance(value, dict):
            # {"Authorization": "Basic ..."} form
            value = value.get("Authorization") or value.get("authorization")
        normalized[field] = value
    return normalized


def read_managed_preferences(
    directory: Path = Path("/Library/Managed Preferences"),
    domains: tuple[str, ...] | list[str] = MANAGED_DOMAINS,
) -> dict[str, Any]:
    """Read the first managed preference plist found among `domains`.

    Returns:
        Normalized config values, or an empty dict when no domain is managed.
    """
    for domain in domains:
        path = Path(directory) / f"{domain}.plist"
        if not path.exists():
            continue
        try:
            with open(path, "rb") as f:
                raw = plistlib.load(f)
        except (OSError, plistlib.InvalidFileException) as exc:
            logger.warning("managed_preferences_unreadable", path=str(path), error=str(exc))
            continue
        if not isinstance(raw, dict):
            continue
        values = normalize_managed_keys(raw)
        logger.info("managed_preferences_loaded", domain=domain, keys=sorted(values))
        return values
    return {}


# =============================================================================
# Configuration Loader
# =============================================================================
def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None,
    managed: Optional[dict[str, Any]] = None,
) -> ProvisionerConfig:
    """Resolve the configuration from every source.

    Args:
        path: YAML configuration file. If None, `provisioner.yaml` in the
            current directory is used when present.
        overrides: Command-line values. None-valued keys are ignored so an
            unset flag never masks a lower layer.
        managed: Normalized managed-preference values
            (see read_managed_preferences).

    Returns:
        A fully validated ProvisionerConfig.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigurationError: If the YAML is malformed or a value is invalid.
    """
    if path is None:
        default_path = Path("provisioner.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        try:
            with open(config_path) as f:
                raw_data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                message=f"Invalid YAML in {path}: {exc}",
                error_code="INVALID_CONFIG_FILE",
                details={"path": str(path)},
            ) from exc
        if isinstance(raw_data, dict):
            yaml_data = raw_data

    merged = _deep_merge(yaml_data, managed or {})
    merged = _deep_merge(merged, overrides or {})

    try:
        return ProvisionerConfig(**merged)
    except ValidationError as exc:
        raise ConfigurationError(
            message=f"Invalid configuration: {exc.error_count()} error(s)",
            error_code="INVALID_CONFIG",
            details={"errors": exc.errors(include_url=False)},
        ) from exc
