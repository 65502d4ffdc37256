"""Capabilities the resolution and build logic needs from its host."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Sequence
import tempfile

from .config_loader import SETTINGS_DIR, ConfigStore
from .console import Console
from .destinations import (
    Destination,
    DeviceSource,
    SimulatorSource,
    device_from_record,
    match_destination_id,
)
from .errors import NotFoundError


class RuntimeContext:
    """Abstract runtime context.

    Subclasses supply the capabilities; nothing that consumes a context
    checks which subclass it was given.
    """

    workspace_path: Path
    storage_path: Path

    def report_status(self, message: str) -> None:
        raise NotImplementedError

    def get_config(self, key: str) -> Any:
        raise NotImplementedError

    def get_config_or_default(self, key: str, fallback: Any) -> Any:
        value = self.get_config(key)
        return fallback if value is None else value

    def lookup_target(self, target_id: str) -> Destination:
        raise NotImplementedError

    def on_target_booted(self) -> None:
        return None

    def on_build_completed(self) -> None:
        return None


def resolve_storage_path(workspace_path: Path) -> Path:
    preferred = workspace_path / SETTINGS_DIR
    try:
        preferred.mkdir(parents=True, exist_ok=True)
        return preferred
    except OSError:
        fallback = Path(tempfile.gettempdir()) / "xcpilot"
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def _find_target(candidates: Sequence[Destination], target_id: str) -> Destination | None:
    for candidate in candidates:
        if match_destination_id(candidate, target_id):
            return candidate
    return None


class CliRuntimeContext(RuntimeContext):
    """Runtime context for an interactive terminal session."""

    def __init__(
        self,
        *,
        workspace_path: Path,
        storage_path: Path,
        config: ConfigStore,
        console: Console,
        simulators: SimulatorSource,
        devices: DeviceSource | None = None,
    ) -> None:
        self.workspace_path = workspace_path
        self.storage_path = storage_path
        self.config = config
        self.console = console
        self._simulators = simulators
        self._devices = devices

    @classmethod
    def create(
        cls,
        *,
        workspace_path: Path,
        config: ConfigStore,
        console: Console,
        simulators: SimulatorSource,
        devices: DeviceSource | None = None,
        storage_path: Path | None = None,
    ) -> "CliRuntimeContext":
        return cls(
            workspace_path=workspace_path,
            storage_path=storage_path or resolve_storage_path(workspace_path),
            config=config,
            console=console,
            simulators=simulators,
            devices=devices,
        )

    def report_status(self, message: str) -> None:
        self.console.status(message)

    def get_config(self, key: str) -> Any:
        return self.config.get(key)

    def lookup_target(self, target_id: str) -> Destination:
        found = _find_target(self._simulators.list_simulators(refresh=True), target_id)
        if found is None and self._devices is not None:
            found = _find_target([device_from_record(record) for record in self._devices.list_devices()], target_id)
        if found is None:
            raise NotFoundError(f"Destination not found for id: {target_id}", context={"id": target_id})
        return found

    def on_target_booted(self) -> None:
        self.console.debug("Simulator booted; simulator list will be re-read on next lookup")


class CallbackRuntimeContext(RuntimeContext):
    """Runtime context assembled from host-provided callables."""

    def __init__(
        self,
        *,
        workspace_path: Path,
        storage_path: Path,
        report_status: Callable[[str], None],
        get_config: Callable[[str], Any],
        lookup_target: Callable[[str], Destination],
        on_target_booted: Callable[[], None] | None = None,
        on_build_completed: Callable[[], None] | None = None,
    ) -> None:
        self.workspace_path = workspace_path
        self.storage_path = storage_path
        self._report_status = report_status
        self._get_config = get_config
        self._lookup_target = lookup_target
        self._on_target_booted = on_target_booted
        self._on_build_completed = on_build_completed

    def report_status(self, message: str) -> None:
        self._report_status(message)

    def get_config(self, key: str) -> Any:
        return self._get_config(key)

    def lookup_target(self, target_id: str) -> Destination:
        return self._lookup_target(target_id)

    def on_target_booted(self) -> None:
        if self._on_target_booted is not None:
            self._on_target_booted()

    def on_build_completed(self) -> None:
        if self._on_build_completed is not None:
            self._on_build_completed()


__all__ = [
    "CallbackRuntimeContext",
    "CliRuntimeContext",
    "RuntimeContext",
    "resolve_storage_path",
]
