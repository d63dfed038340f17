"""
provisioner.core.models - Manifest Data Models
==============================================

Pydantic models for the declarative manifest that drives a provisioning run.
The manifest is fetched as JSON, validated once, and is immutable for the
rest of the run (both models are frozen).

Wire Format:
    {
      "preflight":      [ {item}, ... ],
      "setupassistant": [ {item}, ... ],     # "setup" is accepted too
      "userland":       [ {item}, ... ]
    }

    item = {
      "file": "/Library/provisioner/tool.pkg",
      "url": "https://example.com/tool.pkg",
      "hash": "<sha256 hex>",
      "name": "Tool",                         # optional
      "type": "package" | "rootscript" | "userscript",
      "packageid": "com.example.tool",        # optional, packages only
      "version": "1.2.3",                     # optional, packages only
      "retries": 3 | "3",                     # optional
      "retrywait": 5 | "5",                   # optional
      "skip_if": "arm64" | "intel" | ...,     # optional
      "follow_redirects": true,               # optional
      "donotwait": false                      # optional, scripts only
    }

Python attribute names are snake_case (`expected_hash`, `item_type`,
`run_async`, ...); the JSON keys above are their aliases. Both spellings are
accepted on input and `model_dump(by_alias=True)` reproduces the wire keys.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from provisioner.core.enums import ItemKind, Phase


# =============================================================================
# Manifest Item
# =============================================================================
# One unit of work: a package to install, or a script to run. An unknown
# `type` is accepted here on purpose; the orchestrator reports it as a
# failure of that single item instead of rejecting the whole manifest.
# =============================================================================
class ManifestItem(BaseModel):
    """A single package or script entry from the manifest.

    Attributes:
        file: Destination path for the payload. Relative paths are resolved
            under the cache directory by the DownloadCache.
        url: Where the payload is downloaded from.
        expected_hash: Authoritative SHA-256 hex digest of the payload. A file
            at `file` with a different digest is stale and gets re-fetched.
        name: Optional display label (defaults to the file's basename).
        item_type: Raw manifest `type` value; see `kind`.
        package_id: Receipt identifier used to detect an installed package.
        min_version: Minimum installed version that satisfies the item.
        retries: Fetch-and-verify attempts before giving up.
        retry_wait: Seconds to sleep between attempts.
        skip_if: Architecture tag; the item is skipped on a matching host.
        follow_redirects: Per-item redirect policy (None = use the default).
        run_async: Launch the script without waiting for it to exit.
    """

    file: str = Field(
        description="Destination path of the downloaded payload",
    )
    url: str = Field(
        description="Source URL of the payload",
    )
    expected_hash: str = Field(
        alias="hash",
        description="Expected SHA-256 hex digest of the payload",
    )
    name: Optional[str] = Field(
        default=None,
        description="Display label for logs and the progress UI",
    )
    item_type: str = Field(
        alias="type",
        description="Item type: 'package', 'rootscript' or 'userscript'",
    )
    package_id: Optional[str] = Field(
        default=None,
        alias="packageid",
        description="Package receipt identifier",
    )
    min_version: Optional[str] = Field(
        default=None,
        alias="version",
        description="Minimum installed version that satisfies this package",
    )
    retries: int = Field(
        default=3,
        ge=0,
        description="Fetch-and-verify attempts",
    )
    retry_wait: float = Field(
        default=5,
        ge=0,
        alias="retrywait",
        description="Seconds between fetch attempts",
    )
    skip_if: Optional[str] = Field(
        default=None,
        description="Skip this item on hosts of the named architecture",
    )
    follow_redirects: Optional[bool] = Field(
        default=None,
        description="Follow HTTP redirects for this item (None = configured default)",
    )
    run_async: bool = Field(
        default=False,
        alias="donotwait",
        description="Launch the script detached and do not wait for its exit",
    )

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }

    # -------------------------------------------------------------------------
    # Input coercion
    # -------------------------------------------------------------------------
    @field_validator("retries", "retry_wait", mode="before")
    @classmethod
    def _numeric_string(cls, value: Any) -> Any:
        # Manifests in the wild encode these both as numbers and as strings.
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                return float(text)
        return value

    @field_validator("min_version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------
    @property
    def kind(self) -> Optional[ItemKind]:
        """The recognized item kind, or None for an unsupported `type`."""
        try:
            return ItemKind(self.item_type.strip().lower())
        except ValueError:
            return None

    @property
    def display_name(self) -> str:
        return self.name or os.path.basename(self.file) or self.file

    def destination(self, base_dir: Path) -> Path:
        """Absolute payload path; relative `file` values resolve under `base_dir`."""
        path = Path(self.file)
        return path if path.is_absolute() else Path(base_dir) / path


# =============================================================================
# Manifest
# =============================================================================
class Manifest(BaseModel):
    """The full manifest: three ordered item lists keyed by phase.

    Example:
        >>> manifest = Manifest.model_validate(json.loads(payload))
        >>> for item in manifest.items_for(Phase.SETUP):
        ...     print(item.display_name)
    """

    preflight: list[ManifestItem] = Field(
        default_factory=list,
        description="Preflight items (only the first root script is honored)",
    )
    setup: list[ManifestItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("setupassistant", "setup"),
        serialization_alias="setupassistant",
        description="Setup Assistant phase items",
    )
    userland: list[ManifestItem] = Field(
        default_factory=list,
        description="Userland phase items (run once a user is logged in)",
    )

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }

    @field_validator("preflight", "setup", "userland", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def items_for(self, phase: Phase) -> list[ManifestItem]:
        """Return the ordered items of one phase."""
        if phase == Phase.PREFLIGHT:
            return self.preflight
        if phase == Phase.SETUP:
            return self.setup
        return self.userland

    @property
    def item_count(self) -> int:
        return len(self.preflight) + len(self.setup) + len(self.userland)

    def to_json(self) -> str:
        """Serialize with the manifest's wire keys."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)
