"""Backup and restore of a resolved configuration.

Backup captures every backup entry from the live machine into a target
directory; restore writes restore entries back from such a directory.

Layout of a backup directory:
    <target>/
    ├── manifest.json          # what was captured, per logical name
    ├── registry/<name>.json   # exported keys: typed values + subkeys
    ├── files/<name>           # copied files or directory trees
    └── applications.json      # application entries as declared

Entries are paired by logical backup name, so a restore entry finds the
artifact written for the backup entry of the same name. Missing sources
are recorded in the manifest and the report, never fatal.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from . import __version__
from .errors import NotFoundError, StateStoreError
from .models import ResolvedConfiguration
from .privilege import OperationType, PrivilegeModel
from .state.base import RegistryPath
from .state.registry import RegistryValue
from .state.router import StateStoreRouter
from .templates.schema import ApplicationEntry, FileEntry, RegistryEntry

logger = logging.getLogger("wmr.actions")

MANIFEST_NAME = "manifest.json"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class EntryStatus(str, Enum):
    """What happened to one entry."""
    DONE = "done"
    MISSING = "missing"
    DEGRADED = "degraded"
    WOULD_RUN = "would_run"
    ERROR = "error"


@dataclass
class EntryOutcome:
    """Result for a single backup or restore entry."""

    kind: str
    name: str
    path: str
    status: EntryStatus
    detail: str = ""


@dataclass
class ActionReport:
    """Combined result of a backup or restore run."""

    action: str
    template: str
    directory: str
    outcomes: list[EntryOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when no entry errored. Missing and degraded entries are not errors."""
        return not any(o.status == EntryStatus.ERROR for o in self.outcomes)

    def count(self, status: EntryStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)


class ManifestEntry(BaseModel):
    """One captured entry in a backup manifest."""

    kind: str
    path: str = ""
    artifact: str = ""
    status: EntryStatus = EntryStatus.DONE


class BackupManifest(BaseModel):
    """Metadata for a configuration backup.

    Attributes:
        template: Name of the template that was resolved.
        created_at: When the backup was taken.
        machine_name: Machine the configuration was resolved for.
        hostname: Host the configuration was resolved for.
        version: wmr version that wrote the backup.
        entries: Logical backup name -> captured entry.
    """

    template: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    machine_name: str = ""
    hostname: str = ""
    version: str = __version__
    entries: dict[str, ManifestEntry] = Field(default_factory=dict)


def artifact_name(logical_name: str) -> str:
    """Filesystem-safe artifact name for a logical backup name."""
    return _UNSAFE.sub("_", logical_name).strip("._") or "entry"


def read_manifest(directory: Path) -> BackupManifest:
    path = Path(directory) / MANIFEST_NAME
    if not path.exists():
        raise NotFoundError(str(path))
    return BackupManifest.model_validate_json(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Registry export/import
# ---------------------------------------------------------------------------


def _export_key(backend: Any, path: RegistryPath, value_names: list[str]) -> dict[str, Any]:
    values = backend.values(path)
    if value_names:
        wanted = {n.lower() for n in value_names}
        values = {n: v for n, v in values.items() if n.lower() in wanted}
    exported = {"values": {n: v.to_json() for n, v in values.items()}, "subkeys": {}}
    if not value_names:
        for sub in backend.subkeys(path):
            exported["subkeys"][sub] = _export_key(backend, path.child(sub), [])
    return exported


def _export_registry(store: StateStoreRouter, entry: RegistryEntry) -> dict[str, Any]:
    backend, path = store.backend_for(entry.path)
    if entry.type == "value" and entry.key_name:
        value = backend.get_value(path, entry.key_name)
        return {"path": str(path), "values": {entry.key_name: value.to_json()}, "subkeys": {}}
    return {"path": str(path), **_export_key(backend, path, entry.value_names)}


def _import_key(store: StateStoreRouter, path: RegistryPath, exported: dict[str, Any]) -> int:
    written = 0
    if not store.exists(path):
        store.create(path, "key")
    for value_name, raw in exported.get("values", {}).items():
        value = RegistryValue.from_json(raw)
        store.set(path, value_name, value.data, value.value_type.value)
        written += 1
    for sub_name, sub in exported.get("subkeys", {}).items():
        written += _import_key(store, path.child(sub_name), sub)
    return written


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


def backup_configuration(
    resolved: ResolvedConfiguration,
    store: StateStoreRouter,
    target_dir: Path,
) -> ActionReport:
    """Capture every backup entry of ``resolved`` into ``target_dir``.

    Args:
        resolved: Resolved configuration to back up.
        store: State store to read machine state from.
        target_dir: Directory to write artifacts and manifest into.

    Returns:
        ActionReport with one outcome per entry.
    """
    target = Path(target_dir).expanduser()
    target.mkdir(parents=True, exist_ok=True)
    manifest = BackupManifest(
        template=resolved.name,
        machine_name=resolved.machine_name,
        hostname=resolved.hostname,
    )
    report = ActionReport(action="backup", template=resolved.name, directory=str(target))
    applications: list[dict[str, Any]] = []

    for kind, entry in resolved.backup.entries():
        name = entry.logical_name
        if isinstance(entry, ApplicationEntry):
            applications.append(entry.model_dump(exclude_none=True))
            manifest.entries[name] = ManifestEntry(kind=kind, artifact="applications.json")
            report.outcomes.append(EntryOutcome(kind, name, entry.id or entry.name, EntryStatus.DONE))
            continue

        artifact = f"{'registry' if kind == 'registry' else 'files'}/{artifact_name(name)}"
        try:
            if isinstance(entry, RegistryEntry):
                artifact += ".json"
                exported = _export_registry(store, entry)
                out = target / artifact
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_text(json.dumps(exported, indent=2), encoding="utf-8")
            else:
                store.files.copy_out(entry.path, target / artifact)
        except NotFoundError as exc:
            logger.warning("Backup source missing for '%s': %s", name, exc)
            manifest.entries[name] = ManifestEntry(kind=kind, path=entry.path, status=EntryStatus.MISSING)
            report.outcomes.append(EntryOutcome(kind, name, entry.path, EntryStatus.MISSING, str(exc)))
            continue
        except StateStoreError as exc:
            logger.error("Backup of '%s' failed: %s", name, exc)
            report.outcomes.append(EntryOutcome(kind, name, entry.path, EntryStatus.ERROR, str(exc)))
            continue

        manifest.entries[name] = ManifestEntry(kind=kind, path=entry.path, artifact=artifact)
        report.outcomes.append(EntryOutcome(kind, name, entry.path, EntryStatus.DONE, artifact))

    if applications:
        (target / "applications.json").write_text(json.dumps(applications, indent=2), encoding="utf-8")
    (target / MANIFEST_NAME).write_text(manifest.model_dump_json(indent=2), encoding="utf-8")

    logger.info(
        "Backed up '%s' to %s: %d captured, %d missing",
        resolved.name, target, report.count(EntryStatus.DONE), report.count(EntryStatus.MISSING),
    )
    return report


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


def _restore_registry(store: StateStoreRouter, entry: RegistryEntry, artifact: Path) -> int:
    exported = json.loads(artifact.read_text(encoding="utf-8"))
    _, path = store.backend_for(entry.path)
    return _import_key(store, path, exported)


def _restore_file(store: StateStoreRouter, entry: FileEntry, artifact: Path) -> Path:
    return store.files.copy_in(artifact, entry.path)


def restore_configuration(
    resolved: ResolvedConfiguration,
    store: StateStoreRouter,
    source_dir: Path,
    privileges: Optional[PrivilegeModel] = None,
    what_if: bool = False,
) -> ActionReport:
    """Write the restore entries of ``resolved`` back from ``source_dir``.

    Writes under the machine-wide hive run as admin operations: without
    elevation they are skipped and reported as degraded.

    Args:
        resolved: Resolved configuration to restore.
        store: State store to write machine state to.
        source_dir: A directory written by backup_configuration().
        privileges: Privilege model; defaults to detecting elevation.
        what_if: Report what would be written without writing.

    Returns:
        ActionReport with one outcome per entry.
    """
    source = Path(source_dir).expanduser()
    manifest = read_manifest(source)
    privileges = privileges or PrivilegeModel()
    report = ActionReport(action="restore", template=resolved.name, directory=str(source))

    for kind, entry in resolved.restore_entries.entries():
        name = entry.logical_name
        captured = manifest.entries.get(name)
        target_path = getattr(entry, "path", "") or getattr(entry, "id", "") or entry.name

        if captured is None or captured.status != EntryStatus.DONE:
            report.outcomes.append(EntryOutcome(kind, name, target_path, EntryStatus.MISSING,
                                                "not captured in this backup"))
            continue
        if isinstance(entry, ApplicationEntry):
            report.outcomes.append(EntryOutcome(kind, name, target_path, EntryStatus.DONE, "listed"))
            continue

        artifact = source / captured.artifact
        machine_wide = isinstance(entry, RegistryEntry) and entry.machine_wide
        description = f"restore {kind} '{name}' to {target_path}"

        if what_if:
            report.outcomes.append(EntryOutcome(kind, name, target_path, EntryStatus.WOULD_RUN, description))
            continue

        if isinstance(entry, RegistryEntry):
            def main(entry=entry, artifact=artifact):
                return _restore_registry(store, entry, artifact)
        else:
            def main(entry=entry, artifact=artifact):
                return _restore_file(store, entry, artifact)

        try:
            result = privileges.safe_admin_operation(
                main,
                fallback=lambda: None,
                operation_type=OperationType.ADMIN if machine_wide else OperationType.USER,
                description=description,
            )
        except StateStoreError as exc:
            logger.error("Restore of '%s' failed: %s", name, exc)
            report.outcomes.append(EntryOutcome(kind, name, target_path, EntryStatus.ERROR, str(exc)))
            continue

        status = EntryStatus.DEGRADED if result.degraded else EntryStatus.DONE
        report.outcomes.append(EntryOutcome(kind, name, target_path, status, result.report))

    logger.info(
        "Restored '%s' from %s: %d written, %d degraded, %d missing",
        resolved.name, source, report.count(EntryStatus.DONE),
        report.count(EntryStatus.DEGRADED), report.count(EntryStatus.MISSING),
    )
    return report
