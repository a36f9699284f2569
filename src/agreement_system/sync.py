"""Template sync engine: apply a protection policy to one managed file."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

import yaml

from .merge import Action, resolve_merge


class Protection(str, Enum):
    ALWAYS_WRITE = "always-write"
    WRITE_IF_ABSENT = "write-if-absent"
    WRITE_IF_EMPTY_MARKER = "write-if-empty-marker"
    MERGE_ON_MARKER = "merge-on-marker"


@dataclass(frozen=True)
class Policy:
    protection: Protection
    marker: Optional[str] = None
    keyword: Optional[str] = None

    @classmethod
    def always_write(cls) -> "Policy":
        return cls(Protection.ALWAYS_WRITE)

    @classmethod
    def write_if_absent(cls) -> "Policy":
        return cls(Protection.WRITE_IF_ABSENT)

    @classmethod
    def write_if_empty_marker(cls, marker: str) -> "Policy":
        return cls(Protection.WRITE_IF_EMPTY_MARKER, marker=marker)

    @classmethod
    def merge_on_marker(cls, marker: str, keyword: Optional[str] = None) -> "Policy":
        return cls(Protection.MERGE_ON_MARKER, marker=marker, keyword=keyword)


@dataclass(frozen=True)
class ManagedFile:
    """One row of a mapping table. Paths are POSIX-style and relative."""
    source: str
    destination: str
    policy: Policy
    skip_reason: str = ""


@dataclass(frozen=True)
class SyncResult:
    destination: str
    action: Action
    detail: str = ""
    warning: Optional[str] = None


class SyncEngine:
    """Copy bundled templates into a project according to each file's policy."""

    def __init__(self, template_root: Path, project_root: Path):
        self.template_root = template_root
        self.project_root = project_root

    def sync_all(self, entries: Iterable[ManagedFile]) -> list[SyncResult]:
        return [self.sync(entry) for entry in entries]

    def sync(self, entry: ManagedFile) -> SyncResult:
        source = self.template_root / entry.source
        destination = self.project_root / entry.destination
        policy = entry.policy

        if not destination.exists():
            self._write(destination, source.read_bytes())
            return SyncResult(entry.destination, Action.WRITTEN, "created")

        if policy.protection is Protection.ALWAYS_WRITE:
            self._write(destination, source.read_bytes())
            return SyncResult(entry.destination, Action.WRITTEN, "overwritten")

        if policy.protection is Protection.WRITE_IF_ABSENT:
            return SyncResult(entry.destination, Action.SKIPPED, entry.skip_reason or "already exists")

        if policy.protection is Protection.WRITE_IF_EMPTY_MARKER:
            # only sniffed for the marker, so undecodable bytes are harmless
            existing = destination.read_text(encoding="utf-8", errors="replace")
            if policy.marker in existing:
                return SyncResult(entry.destination, Action.SKIPPED, entry.skip_reason or f"contains '{policy.marker}'")
            self._write(destination, source.read_bytes())
            return SyncResult(entry.destination, Action.WRITTEN, "overwritten")

        if policy.protection is Protection.MERGE_ON_MARKER:
            return self._merge(entry, source, destination)

        raise ValueError(f"Unknown protection class: {policy.protection}")

    def _merge(self, entry: ManagedFile, source: Path, destination: Path) -> SyncResult:
        try:
            existing = destination.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            return SyncResult(
                entry.destination,
                Action.SKIPPED,
                "left untouched",
                f"not valid UTF-8 (byte {e.start}); merge the '{entry.policy.marker}' section by hand",
            )
        incoming = source.read_text(encoding="utf-8")
        outcome = resolve_merge(existing, incoming, entry.policy.marker, entry.policy.keyword)
        if outcome.content is None:
            return SyncResult(entry.destination, outcome.action, outcome.detail, outcome.warning)

        self._write(destination, outcome.content.encode("utf-8"))
        warning = outcome.warning
        if destination.suffix in (".yaml", ".yml"):
            warning = warning or _yaml_problem(outcome.content)
        return SyncResult(entry.destination, outcome.action, outcome.detail, warning)

    def _write(self, destination: Path, data: bytes) -> None:
        """Write through a sibling temp file so a crash never truncates ``destination``."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_name(f".{destination.name}.tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, destination)
        finally:
            tmp_path.unlink(missing_ok=True)


class DuplicateKeyError(yaml.constructor.ConstructorError):
    def __init__(self, key, mark):
        super().__init__(None, None, f"found duplicate key {key!r}", mark)
        self.key = key


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses a mapping declaring the same key twice.

    A kept section and the merged-in section can both declare a top-level
    key; plain ``safe_load`` would silently keep the last one.
    """

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            for key_node, _ in node.value:
                # keys pulled in through ``<<`` may be overridden
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                try:
                    if key in seen:
                        raise DuplicateKeyError(key, key_node.start_mark)
                    seen.add(key)
                except TypeError:
                    # unhashable key, reported by the base constructor
                    continue
        return super().construct_mapping(node, deep=deep)


def _yaml_problem(content: str) -> Optional[str]:
    try:
        yaml.load(content, Loader=UniqueKeyLoader)
    except DuplicateKeyError as e:
        return f"merged file declares '{e.key}' twice (line {e.problem_mark.line + 1})"
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" (line {mark.line + 1})" if mark is not None else ""
        return f"merged file is not valid YAML{where}"
    return None
