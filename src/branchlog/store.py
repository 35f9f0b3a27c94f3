"""Branch-scoped log persistence.

Each branch owns one JSON file under the storage root, named after its
sanitized branch key::

    {
      "branch": "feature/x",
      "items": [
        {"id": "...", "created_at": "...", "updated_at": "...",
         "source": "typed", "text": "Fix flaky tests"}
      ]
    }

Every mutation loads the file, changes it in memory, and writes it back
through an atomic replace, so a reader never observes a partial file.
"""

import json
import os
import tempfile
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from branchlog.constants import (
    BRANCH_KEY_SEPARATOR,
    DEFAULT_LOGS_SUBDIR,
    DEFAULT_STORE_DIRNAME,
    DEFAULT_STORE_DIR_ENV,
)
from branchlog.env import LOGGER
from branchlog.errors import EntryNotFound, PersistenceError

type EntrySource = Literal["typed", "voice"]

_SOURCES: frozenset[str] = frozenset({"typed", "voice"})


def branch_key(branch: str) -> str:
    """Map a branch name to a filesystem-safe, stable storage key.

    >>> branch_key("feature/x")
    'feature__x'
    """
    return branch.replace("/", BRANCH_KEY_SEPARATOR).replace(
        "\\", BRANCH_KEY_SEPARATOR
    )


def now_iso() -> str:
    """Local wall-clock time with UTC offset, second precision."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One note recorded against a branch."""

    id: str
    text: str
    created_at: str
    updated_at: str
    source: EntrySource = "typed"

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.created_at)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "source": self.source,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "LogEntry":
        """Parse a stored record; older records lack updated_at/source."""
        try:
            entry_id = str(raw["id"])
            created_at = str(raw["created_at"])
            text = str(raw["text"])
        except KeyError as exc:
            raise PersistenceError(f"log entry is missing {exc}") from exc
        source = raw.get("source", "typed")
        if source not in _SOURCES:
            source = "typed"
        return cls(
            id=entry_id,
            text=text,
            created_at=created_at,
            updated_at=str(raw.get("updated_at") or created_at),
            source=source,
        )


@dataclass(slots=True)
class BranchLog:
    """All entries of one branch, in insertion order."""

    branch: str
    items: list[LogEntry] = field(default_factory=list)

    @property
    def key(self) -> str:
        return branch_key(self.branch)

    def index_of(self, entry_id: str) -> int:
        for i, item in enumerate(self.items):
            if item.id == entry_id:
                return i
        raise EntryNotFound(f"no entry {entry_id!r} on branch {self.branch!r}")

    def to_json(self) -> str:
        payload = {
            "branch": self.branch,
            "items": [item.to_dict() for item in self.items],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def default_store_root(repo_root: Path) -> Path:
    """Resolve the storage root: ``$BRANCHLOG_HOME`` or ``<repo>/.branchlog/logs``."""
    override = os.environ.get(DEFAULT_STORE_DIR_ENV, "")
    if override:
        return Path(override).expanduser()
    return repo_root / DEFAULT_STORE_DIRNAME / DEFAULT_LOGS_SUBDIR


class LogStore:
    """Loads and atomically saves per-branch logs under *root*."""

    __slots__ = ("_root",)

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, branch: str) -> Path:
        return self._root / f"{branch_key(branch)}.json"

    def load(self, branch: str) -> BranchLog:
        """Read a branch log; a branch with no file yet has an empty log."""
        path = self.path_for(branch)
        if not path.exists():
            return BranchLog(branch=branch)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"failed to read {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"corrupt log file {path}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
            raise PersistenceError(f"unexpected log layout in {path}")

        items: list[LogEntry] = []
        seen: set[str] = set()
        for raw in data.get("items", []):
            if not isinstance(raw, dict):
                raise PersistenceError(f"unexpected log record in {path}")
            entry = LogEntry.from_dict(raw)
            if entry.id in seen:
                raise PersistenceError(f"duplicate entry id {entry.id!r} in {path}")
            seen.add(entry.id)
            items.append(entry)
        return BranchLog(branch=branch, items=items)

    def save(self, log: BranchLog) -> None:
        """Replace the branch file atomically; on failure the old file stays."""
        path = self.path_for(log.branch)
        content = log.to_json()
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.stem}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"failed to write {path}: {exc}") from exc
        LOGGER.debug("Saved %d entries to %s", len(log.items), path)

    def entries(self, branch: str) -> list[LogEntry]:
        return self.load(branch).items

    def append(
        self, branch: str, text: str, source: EntrySource = "typed"
    ) -> LogEntry:
        """Add a new entry with a fresh id and return it."""
        log = self.load(branch)
        existing = {item.id for item in log.items}
        entry_id = uuid.uuid4().hex
        while entry_id in existing:
            entry_id = uuid.uuid4().hex
        stamp = now_iso()
        entry = LogEntry(
            id=entry_id,
            text=text,
            created_at=stamp,
            updated_at=stamp,
            source=source,
        )
        log.items.append(entry)
        self.save(log)
        return entry

    def update(self, branch: str, entry_id: str, text: str) -> LogEntry:
        """Replace an entry's text and bump its updated_at."""
        log = self.load(branch)
        index = log.index_of(entry_id)
        entry = replace(log.items[index], text=text, updated_at=now_iso())
        log.items[index] = entry
        self.save(log)
        return entry

    def delete(self, branch: str, entry_id: str) -> LogEntry:
        """Remove exactly one entry and return it."""
        log = self.load(branch)
        entry = log.items.pop(log.index_of(entry_id))
        self.save(log)
        return entry
