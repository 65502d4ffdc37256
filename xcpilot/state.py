"""Per-workspace memory of interactively chosen values."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, Mapping
import json
import os
import tempfile

from .console import Console
from .errors import StateCorruptError

STATE_FILE = "cli-state.json"

WORKSPACE_KEY = "cli.xcworkspace"
SCHEME_KEY = "cli.scheme"
CONFIGURATION_KEY = "cli.configuration"
DESTINATION_KEY = "cli.destination.id"

_SCALAR_TYPES = (str, int, float, bool, type(None))


class SelectionState(Mapping[str, Any]):
    """Immutable snapshot of remembered values keyed by dotted names.

    Updates return a new snapshot; the receiver is never modified, so a
    snapshot handed out earlier keeps describing what it described.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SelectionState({self._values!r})"

    def with_value(self, key: str, value: Any) -> "SelectionState":
        if not isinstance(value, _SCALAR_TYPES):
            raise TypeError(f"Remembered value for '{key}' must be a JSON scalar, got {type(value).__name__}")
        values = dict(self._values)
        values[key] = value
        return SelectionState(values)

    def without(self, key: str) -> "SelectionState":
        if key not in self._values:
            return self
        values = dict(self._values)
        del values[key]
        return SelectionState(values)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)


def state_path(storage_dir: Path) -> Path:
    return storage_dir / STATE_FILE


def load_state(storage_dir: Path) -> SelectionState:
    """Load the state stored under ``storage_dir``.

    A missing file yields an empty state. A file that cannot be decoded, or
    whose root is not a JSON object, raises :class:`StateCorruptError`.
    """

    path = state_path(storage_dir)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return SelectionState()

    # UnicodeDecodeError is a ValueError
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise StateCorruptError(path, str(exc)) from exc
    if not isinstance(data, dict):
        raise StateCorruptError(path, "root must be a JSON object")
    return SelectionState(data)


def save_state(storage_dir: Path, state: Mapping[str, Any]) -> Path:
    """Write ``state`` to ``storage_dir``, replacing the previous file in one rename."""

    storage_dir.mkdir(parents=True, exist_ok=True)
    path = state_path(storage_dir)
    payload = json.dumps(dict(state), indent=2)
    fd, temp_name = tempfile.mkstemp(prefix=".cli-state.", suffix=".tmp", dir=str(storage_dir))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.write("\n")
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return path


class SelectionMemory:
    """Holds the current snapshot and writes it back only when it changed.

    Two processes sharing one workspace race on the state file; the last one
    to flush wins and nothing is merged.
    """

    def __init__(
        self,
        storage_dir: Path,
        state: SelectionState | None = None,
        *,
        corruption: StateCorruptError | None = None,
    ) -> None:
        self.storage_dir = storage_dir
        self._state = state if state is not None else SelectionState()
        self._dirty = False
        self.corruption = corruption

    @classmethod
    def load(cls, storage_dir: Path, *, console: Console | None = None) -> "SelectionMemory":
        try:
            state = load_state(storage_dir)
        except StateCorruptError as exc:
            if console is not None:
                console.warning(f"{exc}; starting with empty selections")
            return cls(storage_dir, SelectionState(), corruption=exc)
        return cls(storage_dir, state)

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def corrupt(self) -> bool:
        return self.corruption is not None

    def get(self, key: str) -> Any:
        return self._state.get(key)

    def remember(self, key: str, value: Any) -> None:
        self._state = self._state.with_value(key, value)
        self._dirty = True

    def forget(self, key: str) -> None:
        if key in self._state:
            self._state = self._state.without(key)
            self._dirty = True

    def flush(self) -> bool:
        if not self._dirty:
            return False
        save_state(self.storage_dir, self._state)
        self._dirty = False
        return True


__all__ = [
    "CONFIGURATION_KEY",
    "DESTINATION_KEY",
    "SCHEME_KEY",
    "STATE_FILE",
    "SelectionMemory",
    "SelectionState",
    "WORKSPACE_KEY",
    "load_state",
    "save_state",
    "state_path",
]
