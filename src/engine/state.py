"""Persistent resource state.

The state file records every resource whose most recent create succeeded
and has not since been destroyed, so later runs can diff declared config
against what was applied and dependents can read upstream outputs.

State is persisted to <home>/state/state.json and rewritten atomically
after every successful resource operation.
"""

import copy
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from engine.errors import StateCorruptError, StateIOError
from resources import Resource

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StateEntry:
    """Persisted snapshot of an applied resource.

    Attributes:
        id: Resource ID
        name: Resource name
        type: Resource type
        module: Module path ('' for top-level)
        config: Declared config at the time it was applied
        config_hash: Structural hash of config
        outputs: Provider-populated outputs
        depends_on: Dependency IDs at the time it was applied
        checksum: Content checksum recorded by the provider
        source_file: File the resource was declared in
        applied_at: ISO timestamp of the successful operation
    """
    id: str
    name: str
    type: str
    module: str = ''
    config: dict[str, Any] = field(default_factory=dict)
    config_hash: str = ''
    outputs: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    checksum: Optional[str] = None
    source_file: Optional[str] = None
    applied_at: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: Resource, config_hash: str) -> 'StateEntry':
        """Snapshot a resource after a successful create or refresh."""
        return cls(
            id=resource.id,
            name=resource.name,
            type=resource.type,
            module=resource.module,
            config=copy.deepcopy(resource.config),
            config_hash=config_hash,
            outputs=copy.deepcopy(resource.outputs),
            depends_on=list(resource.depends_on),
            checksum=resource.checksum,
            source_file=resource.source_file,
            applied_at=_now(),
        )

    def to_resource(self) -> Resource:
        """Rebuild a Resource from this entry (for destroying undeclared resources)."""
        return Resource(
            name=self.name,
            type=self.type,
            module=self.module,
            depends_on=list(self.depends_on),
            config=copy.deepcopy(self.config),
            outputs=copy.deepcopy(self.outputs),
            checksum=self.checksum,
            source_file=self.source_file,
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'module': self.module,
            'source_file': self.source_file,
            'checksum': self.checksum,
            'depends_on': list(self.depends_on),
            'config_hash': self.config_hash,
            'applied_at': self.applied_at,
            'config': self.config,
            'outputs': self.outputs,
        }
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'StateEntry':
        """Create StateEntry from dictionary.

        Raises:
            StateCorruptError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise StateCorruptError(f"State entry must be an object, got {type(data).__name__}")
        for key in ('id', 'name', 'type'):
            if not isinstance(data.get(key), str):
                raise StateCorruptError(f"State entry missing required field: {key}")
        for key in ('config', 'outputs'):
            if not isinstance(data.get(key, {}) or {}, dict):
                raise StateCorruptError(f"State entry '{data['id']}' field {key} must be an object")
        if not isinstance(data.get('depends_on') or [], list):
            raise StateCorruptError(f"State entry '{data['id']}' field depends_on must be a list")
        return cls(
            id=data['id'],
            name=data['name'],
            type=data['type'],
            module=data.get('module') or '',
            config=data.get('config') or {},
            config_hash=data.get('config_hash', ''),
            outputs=data.get('outputs') or {},
            depends_on=list(data.get('depends_on') or []),
            checksum=data.get('checksum'),
            source_file=data.get('source_file'),
            applied_at=data.get('applied_at'),
        )


class State:
    """Ordered collection of StateEntries plus run metadata."""

    def __init__(self, entries: Optional[list[StateEntry]] = None, updated_at: Optional[str] = None):
        self._entries: dict[str, StateEntry] = {}
        for entry in entries or []:
            self.upsert(entry)
        self.updated_at = updated_at

    def upsert(self, entry: StateEntry) -> None:
        """Insert or replace the entry for entry.id (position is kept on replace)."""
        self._entries[entry.id] = entry

    def remove(self, resource_id: str) -> Optional[StateEntry]:
        return self._entries.pop(resource_id, None)

    def get(self, resource_id: str) -> Optional[StateEntry]:
        return self._entries.get(resource_id)

    @property
    def entries(self) -> list[StateEntry]:
        return list(self._entries.values())

    @property
    def ids(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> dict:
        return {
            'version': STATE_VERSION,
            'updated_at': self.updated_at,
            'resources': [e.to_dict() for e in self._entries.values()],
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'State':
        """Create State from the persisted document.

        Raises:
            StateCorruptError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise StateCorruptError("State document must be an object")
        version = data.get('version', STATE_VERSION)
        if version != STATE_VERSION:
            raise StateCorruptError(f"Unsupported state version: {version}")
        resources = data.get('resources', [])
        if not isinstance(resources, list):
            raise StateCorruptError("State field 'resources' must be a list")

        state = cls(updated_at=data.get('updated_at'))
        for item in resources:
            entry = StateEntry.from_dict(item)
            if entry.id in state:
                raise StateCorruptError(f"Duplicate state entry: '{entry.id}'")
            state.upsert(entry)
        return state


class StateStore:
    """Crash-consistent state persistence.

    Every write goes to a temporary file in the state directory, is flushed
    to disk, and is then renamed over the state file, so a crash mid-write
    leaves the previous state intact. upsert() and remove() save
    immediately under a lock so concurrent workers never lose updates.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._state: Optional[State] = None

    def load(self) -> State:
        """Read persisted state (empty State when no file exists).

        Raises:
            StateCorruptError: If the file content is malformed
            StateIOError: If the file cannot be read
        """
        with self._lock:
            if not self.path.exists():
                logger.debug(f"No state file at {self.path}, starting empty")
                self._state = State()
                return self._state

            try:
                with open(self.path, encoding='utf-8') as f:
                    data = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise StateCorruptError(f"Malformed state file {self.path}: {e}") from e
            except OSError as e:
                raise StateIOError(f"Cannot read state file {self.path}: {e}") from e

            self._state = State.from_dict(data)
            logger.debug(f"Loaded {len(self._state)} state entries from {self.path}")
            return self._state

    @property
    def state(self) -> State:
        """The in-memory state, loaded on first access."""
        with self._lock:
            if self._state is None:
                return self.load()
            return self._state

    def save(self, state: Optional[State] = None) -> Path:
        """Atomically write state to disk.

        Raises:
            StateIOError: If the state cannot be written
        """
        with self._lock:
            if state is not None:
                self._state = state
            state = self.state
            state.updated_at = _now()

            tmp_file = self.path.with_name(f'.{self.path.name}.{os.getpid()}.tmp')
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_file, 'w', encoding='utf-8') as f:
                    json.dump(state.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                # Rename over the previous file (atomic on POSIX)
                tmp_file.replace(self.path)
            except (OSError, TypeError, ValueError) as e:
                if tmp_file.exists():
                    tmp_file.unlink()
                raise StateIOError(f"Failed to save state to {self.path}: {e}") from e

            logger.debug(f"Saved state ({len(state)} entries) to {self.path}")
            return self.path

    def upsert(self, entry: StateEntry) -> None:
        """Record a successful create or refresh and persist immediately."""
        with self._lock:
            self.state.upsert(entry)
            self.save()

    def remove(self, resource_id: str) -> None:
        """Forget a destroyed resource and persist immediately."""
        with self._lock:
            if self.state.remove(resource_id) is not None:
                self.save()

    def find_by_id(self, resource_id: str) -> Optional[StateEntry]:
        """Look up an entry, e.g. to read an upstream resource's outputs."""
        with self._lock:
            return self.state.get(resource_id)
