"""
provisioner.manifest_generator - Manifest Authoring
===================================================

Builds a manifest from local payload files for administrators. Each file is
hashed, given a download URL under `base_url` and placed in the phase its
type belongs to:

    rootscript  → preflight
    package     → setupassistant
    userscript  → userland

    url  = {base_url}/{type}/{filename}
    file = {install_path}/{filename}
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Optional, Union

import structlog

from provisioner.core.enums import ItemKind, Phase
from provisioner.core.models import Manifest, ManifestItem
from provisioner.infrastructure.verifier import ContentVerifier

logger = structlog.get_logger()

DEFAULT_INSTALL_PATH = "/Library/Provisioner/cache"

PHASE_FOR_KIND = {
    ItemKind.ROOT_SCRIPT: Phase.PREFLIGHT,
    ItemKind.PACKAGE: Phase.SETUP,
    ItemKind.USER_SCRIPT: Phase.USERLAND,
}


class ManifestGenerator:
    """Accumulates local files and renders them as a Manifest.

    Example:
        >>> generator = ManifestGenerator("https://example.com/bootstrap")
        >>> generator.add("build/Tool.pkg", ItemKind.PACKAGE, package_id="com.example.tool")
        >>> print(generator.to_json())
    """

    def __init__(
        self,
        base_url: str,
        install_path: str = DEFAULT_INSTALL_PATH,
        verifier: Optional[ContentVerifier] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.install_path = install_path.rstrip("/") or "/"
        self._verifier = verifier or ContentVerifier()
        self._items: dict[Phase, list[ManifestItem]] = {phase: [] for phase in Phase}

    def add(
        self,
        path: Union[str, Path],
        kind: ItemKind,
        name: Optional[str] = None,
        package_id: Optional[str] = None,
        version: Optional[str] = None,
    ) -> ManifestItem:
        """Hash `path` and append it to the phase for `kind`.

        Raises:
            FileNotFoundError: If `path` cannot be read.
        """
        path = Path(path)
        digest = self._verifier.digest(path)
        if digest is None:
            raise FileNotFoundError(f"File not found: {path}")

        kind = ItemKind(kind)
        item = ManifestItem(
            name=name,
            file=str(PurePosixPath(self.install_path) / path.name),
            url=f"{self.base_url}/{kind.value}/{path.name}",
            expected_hash=digest,
            item_type=kind.value,
            package_id=package_id,
            min_version=version,
        )
        self._items[PHASE_FOR_KIND[kind]].append(item)
        logger.debug("manifest_item_added", file=str(path), type=kind.value, hash=digest)
        return item

    def build(self) -> Manifest:
        return Manifest(
            preflight=list(self._items[Phase.PREFLIGHT]),
            setup=list(self._items[Phase.SETUP]),
            userland=list(self._items[Phase.USERLAND]),
        )

    def to_json(self) -> str:
        return self.build().to_json()

    def write(self, output: Union[str, Path]) -> Path:
        output = Path(output)
        output.write_text(self.to_json() + "\n")
        logger.info("manifest_written", path=str(output), items=self.build().item_count)
        return output
