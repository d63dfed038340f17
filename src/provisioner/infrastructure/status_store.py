"""
provisioner.infrastructure.status_store - Run Status Persistence
================================================================

Persists phase/stage transitions so that external tooling can observe a run
and so that a pre-run gate can tell whether provisioning already succeeded.

Architecture:

    record_transition(phase, stage)
        │
        ├─ load()            full StatusDocument (read)
        ├─ with_phase(...)   replace one PhaseStatus (modify)
        └─ save(document)    every representation from the SAME document (write)
                │
                ├─→ PlistStatusSerializer → status.plist (CamelCase keys)
                └─→ JsonStatusSerializer  → status.json  (snake_case keys)

    write_completion_marker()     → marker plist (LastRunVersion, LastUpdated,
                                    Architecture)
    last_successful_run_marker()  → CompletionMarker | None

Each file is replaced atomically (temp file in the same directory, then
os.replace). A failed write to either representation is logged and does
not interrupt the run.

Implementations:
    - StatusStore (ABC):      read-modify-write logic, marker queries, retention
    - FileStatusStore:        plist + JSON files on disk
    - InMemoryStatusStore:    dict-backed, keeps a transition history (tests, dry runs)
"""

from __future__ import annotations

import json
import logging
import os
import plistlib
import tempfile
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from provisioner.core.constants import TIMESTAMP_FORMAT, TOOL_VERSION
from provisioner.core.enums import Phase, Stage
from provisioner.core.exceptions import StatusStoreError
from provisioner.core.state import CompletionMarker, PhaseStatus, StatusDocument

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value else ""


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.strptime(str(value), TIMESTAMP_FORMAT)
    except ValueError:
        return None


# =============================================================================
# Serializers
# =============================================================================
# Two renderings of one StatusDocument. Neither keeps state of its own.
# =============================================================================
class StatusSerializer(ABC):
    """Converts a StatusDocument to and from one on-disk representation."""

    @abstractmethod
    def dumps(self, document: StatusDocument) -> bytes:
        """Render the document."""

    @abstractmethod
    def loads(self, data: bytes) -> StatusDocument:
        """Parse a rendered document.

        Raises:
            StatusStoreError: If the data cannot be parsed.
        """


class PlistStatusSerializer(StatusSerializer):
    """XML property list keyed by phase, with CamelCase record keys."""

    def dumps(self, document: StatusDocument) -> bytes:
        payload = {
            name: {
                "Stage": status.stage.value,
                "StartTime": _format_time(status.start_time),
                "CompletionTime": _format_time(status.completion_time),
                "ExitCode": status.exit_code,
                "Version": status.version,
                "Phase": status.phase.value,
                "Architecture": status.architecture,
                "BootstrapUrl": status.manifest_url,
                "LastError": status.last_error,
                "RunId": status.run_id,
            }
            for name, status in document.phases.items()
        }
        return plistlib.dumps(payload, sort_keys=True)

    def loads(self, data: bytes) -> StatusDocument:
        try:
            raw = plistlib.loads(data)
            phases = {
                name: PhaseStatus(
                    run_id=record.get("RunId", ""),
                    phase=Phase(record.get("Phase", name)),
                    stage=Stage(record["Stage"]),
                    start_time=_parse_time(record.get("StartTime")),
                    completion_time=_parse_time(record.get("CompletionTime")),
                    exit_code=int(record.get("ExitCode", 0)),
                    last_error=record.get("LastError", ""),
                    architecture=record.get("Architecture", ""),
                    version=record.get("Version", ""),
                    manifest_url=record.get("BootstrapUrl", ""),
                )
                for name, record in raw.items()
            }
        except (plistlib.InvalidFileException, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise StatusStoreError(
                message=f"Unreadable status plist: {exc}",
                error_code="STATUS_READ_FAILED",
            ) from exc
        return StatusDocument(phases=phases)


class JsonStatusSerializer(StatusSerializer):
    """Pretty-printed JSON mirror, sorted keys, snake_case record keys."""

    def dumps(self, document: StatusDocument) -> bytes:
        payload = {
            name: {
                "stage": status.stage.value,
                "start_time": _format_time(status.start_time),
                "completion_time": _format_time(status.completion_time),
                "exit_code": status.exit_code,
                "version": status.version,
                "phase": status.phase.value,
                "architecture": status.architecture,
                "manifest_url": status.manifest_url,
                "last_error": status.last_error,
                "run_id": status.run_id,
            }
            for name, status in document.phases.items()
        }
        return (json.dumps(payload, indent=2, sort_keys=True) + "\n").encode("utf-8")

    def loads(self, data: bytes) -> StatusDocument:
        try:
            raw = json.loads(data)
            phases = {
                name: PhaseStatus(
                    run_id=record.get("run_id", ""),
                    phase=Phase(record.get("phase", name)),
                    stage=Stage(record["stage"]),
                    start_time=_parse_time(record.get("start_time")),
                    completion_time=_parse_time(record.get("completion_time")),
                    exit_code=int(record.get("exit_code", 0)),
                    last_error=record.get("last_error", ""),
                    architecture=record.get("architecture", ""),
                    version=record.get("version", ""),
                    manifest_url=record.get("manifest_url", ""),
                )
                for name, record in raw.items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise StatusStoreError(
                message=f"Unreadable status JSON: {exc}",
                error_code="STATUS_READ_FAILED",
            ) from exc
        return StatusDocument(phases=phases)


# =============================================================================
# Abstract Base Class: StatusStore
# =============================================================================
class StatusStore(ABC):
    """Phase status persistence with a read-modify-write transition API.

    Subclasses only provide raw document and marker storage; the transition
    rules live here so that every backend behaves the same.

    Attributes:
        run_id: Fresh UUID4 per invocation unless one is supplied.
        architecture: Host architecture tag written into every record.
        version: Tool version written into records and the marker.
        manifest_url: Manifest source written into every record.
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        architecture: str = "",
        version: str = TOOL_VERSION,
        manifest_url: str = "",
        clock: Clock = _now,
    ) -> None:
        self.run_id = run_id or str(uuid.uuid4())
        self.architecture = architecture
        self.version = version
        self.manifest_url = manifest_url
        self._clock = clock

    # -------------------------------------------------------------------------
    # Storage primitives
    # -------------------------------------------------------------------------
    @abstractmethod
    def load(self) -> StatusDocument:
        """Return the current status collection (empty if none exists)."""

    @abstractmethod
    def save(self, document: StatusDocument) -> None:
        """Persist the full collection. Write failures are logged, not raised."""

    @abstractmethod
    def last_successful_run_marker(self) -> Optional[CompletionMarker]:
        """Return the completion marker, or None if no run has fully succeeded."""

    @abstractmethod
    def write_completion_marker(self, marker: CompletionMarker) -> None:
        """Persist the completion marker. Failures are logged, not raised."""

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------
    def record_transition(
        self,
        phase: Phase,
        stage: Stage,
        exit_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> PhaseStatus:
        """Record that `phase` entered `stage`.

        STARTING stamps start_time; terminal stages stamp completion_time.
        A record left by an earlier run is replaced, not merged.
        """
        document = self.load()
        now = self._clock()

        previous = document.get(phase)
        if previous is not None and previous.run_id != self.run_id:
            previous = None

        start_time = previous.start_time if previous else None
        if stage == Stage.STARTING or start_time is None:
            start_time = now

        status = PhaseStatus(
            run_id=self.run_id,
            phase=phase,
            stage=stage,
            start_time=start_time,
            completion_time=now if stage.is_terminal else None,
            exit_code=(
                exit_code if exit_code is not None
                else (previous.exit_code if previous else 0)
            ),
            last_error=(
                error_message if error_message is not None
                else (previous.last_error if previous else "")
            ),
            architecture=self.architecture,
            version=self.version,
            manifest_url=self.manifest_url,
        )
        self.save(document.with_phase(status))
        logger.info("Phase %s -> %s (run %s)", phase.value, stage.value, self.run_id)
        return status

    def completion_marker_for(self, when: Optional[datetime] = None) -> CompletionMarker:
        return CompletionMarker(
            version=self.version,
            last_updated=when or self._clock(),
            architecture=self.architecture,
        )

    # -------------------------------------------------------------------------
    # Queries and retention
    # -------------------------------------------------------------------------
    def has_completed_successfully(self, version: Optional[str] = None) -> bool:
        """True if a completion marker exists (for `version`, when given)."""
        marker = self.last_successful_run_marker()
        if marker is None:
            return False
        return version is None or marker.version == version

    def cleanup_older_than(self, age: timedelta, now: Optional[datetime] = None) -> list[str]:
        """Drop finished phase records whose completion is older than `age`.

        Records still RUNNING, and records without a completion time, are kept.

        Returns:
            Names of the removed phase records.
        """
        cutoff = (now or self._clock()) - age
        document = self.load()
        expired = [
            name
            for name, status in document.phases.items()
            if status.stage != Stage.RUNNING
            and status.completion_time is not None
            and status.completion_time < cutoff
        ]
        if expired:
            self.save(document.without(expired))
            logger.info("Removed expired status records: %s", ", ".join(sorted(expired)))
        return expired


# =============================================================================
# File-Backed Implementation
# =============================================================================
class FileStatusStore(StatusStore):
    """Status persisted as a plist record plus a JSON mirror.

    The plist is the primary representation on load; the JSON file is only
    read when the plist is missing or unreadable.
    """

    def __init__(
        self,
        plist_path: Path,
        json_path: Path,
        marker_path: Path,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.plist_path = Path(plist_path)
        self.json_path = Path(json_path)
        self.marker_path = Path(marker_path)
        self._representations: list[tuple[Path, StatusSerializer]] = [
            (self.plist_path, PlistStatusSerializer()),
            (self.json_path, JsonStatusSerializer()),
        ]

    def load(self) -> StatusDocument:
        for path, serializer in self._representations:
            if not path.exists():
                continue
            try:
                return serializer.loads(path.read_bytes())
            except (OSError, StatusStoreError) as exc:
                logger.warning("Ignoring unreadable status file %s: %s", path, exc)
        return StatusDocument()

    def save(self, document: StatusDocument) -> None:
        for path, serializer in self._representations:
            try:
                _write_atomic(path, serializer.dumps(document))
            except StatusStoreError as exc:
                logger.error("Status write failed for %s: %s", path, exc.message)

    def last_successful_run_marker(self) -> Optional[CompletionMarker]:
        if not self.marker_path.exists():
            return None
        try:
            with open(self.marker_path, "rb") as f:
                raw = plistlib.load(f)
        except (OSError, plistlib.InvalidFileException, ValueError) as exc:
            logger.warning("Unreadable completion marker %s: %s", self.marker_path, exc)
            return None
        if not isinstance(raw, dict) or not raw.get("LastRunVersion"):
            return None
        return CompletionMarker(
            version=str(raw["LastRunVersion"]),
            last_updated=_parse_time(raw.get("LastUpdated")) or _now(),
            architecture=str(raw.get("Architecture", "")),
        )

    def write_completion_marker(self, marker: CompletionMarker) -> None:
        payload = {
            "LastRunVersion": marker.version,
            "LastUpdated": _format_time(marker.last_updated),
            "Architecture": marker.architecture,
        }
        try:
            _write_atomic(self.marker_path, plistlib.dumps(payload, sort_keys=True))
        except StatusStoreError as exc:
            logger.error("Completion marker write failed: %s", exc.message)
            return
        logger.info("Completion marker written for version %s", marker.version)


def _write_atomic(path: Path, data: bytes) -> None:
    """Replace `path` with `data` in one rename.

    Raises:
        StatusStoreError: If the directory or file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as exc:
        raise StatusStoreError(
            message=f"Cannot write {path}: {exc}",
            details={"path": str(path)},
        ) from exc


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryStatusStore(StatusStore):
    """Dict-backed store. `history` keeps every recorded PhaseStatus in order."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._document = StatusDocument()
        self._marker: Optional[CompletionMarker] = None
        self.history: list[PhaseStatus] = []

    def load(self) -> StatusDocument:
        return self._document

    def save(self, document: StatusDocument) -> None:
        self._document = document

    def record_transition(self, *args: Any, **kwargs: Any) -> PhaseStatus:
        status = super().record_transition(*args, **kwargs)
        self.history.append(status)
        return status

    def last_successful_run_marker(self) -> Optional[CompletionMarker]:
        return self._marker

    def write_completion_marker(self, marker: CompletionMarker) -> None:
        self._marker = marker

    def stages(self, phase: Phase) -> list[Stage]:
        """Every stage recorded for `phase`, in order."""
        return [s.stage for s in self.history if s.phase == phase]
