"""Resolution of workspace, scheme, configuration and destination."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Protocol, Sequence
import os

from .console import Console
from .destinations import (
    Destination,
    DeviceSource,
    Partition,
    SimulatorSource,
    enumerate_destinations,
    format_destination_label,
    match_destination_id,
    match_destination_name,
    partition_destinations,
)
from .errors import NotFoundError
from .fzf import PickItem, Picker
from .state import (
    CONFIGURATION_KEY,
    DESTINATION_KEY,
    SCHEME_KEY,
    WORKSPACE_KEY,
    SelectionMemory,
)

DEFAULT_DEBUG_CONFIGURATION = "Debug"
DEFAULT_RELEASE_CONFIGURATION = "Release"
WORKSPACE_SEARCH_DEPTH = 4
_SKIPPED_DIRECTORIES = {"node_modules", "DerivedData", "Pods"}


class ProjectInspector(Protocol):
    def list_schemes(self, workspace: Path) -> Sequence[str]:
        ...

    def list_configurations(self, workspace: Path) -> Sequence[str]:
        ...

    def supported_platforms(
        self,
        *,
        scheme: str,
        configuration: str,
        workspace: Path,
        sdk: str | None = None,
        derived_data_path: Path | None = None,
    ) -> Sequence[str] | None:
        ...


def detect_xcode_workspaces(root: Path, *, depth: int = WORKSPACE_SEARCH_DEPTH) -> List[Path]:
    """Find ``*.xcworkspace`` bundles under ``root``, shallowest first."""

    found: List[Path] = []
    root_depth = len(root.parts)
    for current, directories, _ in os.walk(root):
        current_path = Path(current)
        level = len(current_path.parts) - root_depth
        kept: List[str] = []
        for name in sorted(directories):
            if name.endswith(".xcworkspace"):
                found.append(current_path / name)
                continue
            if name.startswith(".") or name in _SKIPPED_DIRECTORIES:
                continue
            if level + 1 < depth:
                kept.append(name)
        directories[:] = kept
    return sorted(found, key=lambda path: (len(path.parts), str(path)))


def is_debug_release_pair(options: Sequence[str]) -> bool:
    return len(options) == 2 and set(options) == {DEFAULT_DEBUG_CONFIGURATION, DEFAULT_RELEASE_CONFIGURATION}


class PickerOrchestrator:
    """Applies the selection policy to each decision point.

    Precedence: an explicit value, then a single available option, then a
    remembered value that is still available, then the interactive picker.
    Only interactive choices are remembered.
    """

    def __init__(
        self,
        *,
        memory: SelectionMemory,
        picker: Picker,
        inspector: ProjectInspector,
        simulators: SimulatorSource,
        devices: DeviceSource,
        console: Console | None = None,
        arch: str | None = None,
    ) -> None:
        self.memory = memory
        self.picker = picker
        self.inspector = inspector
        self.simulators = simulators
        self.devices = devices
        self.console = console or Console("none")
        self.arch = arch

    def _smart_pick(
        self,
        *,
        key: str,
        options: Sequence[str],
        prompt: str,
        empty_message: str,
        label: Callable[[str], str] = str,
        shortcut: Callable[[Sequence[str]], str | None] | None = None,
    ) -> str:
        if not options:
            raise NotFoundError(empty_message)
        if len(options) == 1:
            return options[0]
        if shortcut is not None:
            chosen = shortcut(options)
            if chosen is not None:
                return chosen

        remembered = self.memory.get(key)
        if remembered is not None and remembered in options:
            self.console.debug(f"Using remembered {key}: {remembered}")
            return remembered

        selected = self.picker.pick(prompt, [PickItem(label=label(option), value=option) for option in options])
        self.memory.remember(key, selected)
        return selected

    def resolve_workspace(self, root: Path, explicit: str | None = None) -> Path:
        if explicit:
            path = Path(explicit).expanduser()
            return path if path.is_absolute() else root / path

        options = [str(path) for path in detect_xcode_workspaces(root)]
        selected = self._smart_pick(
            key=WORKSPACE_KEY,
            options=options,
            prompt="Select xcode workspace",
            empty_message=f"No xcode workspaces found in {root}",
            label=lambda value: os.path.relpath(value, root),
        )
        return Path(selected)

    def resolve_scheme(self, workspace: Path, explicit: str | None = None) -> str:
        if explicit:
            return explicit
        return self._smart_pick(
            key=SCHEME_KEY,
            options=list(self.inspector.list_schemes(workspace)),
            prompt="Select scheme",
            empty_message="No schemes found",
        )

    def resolve_configuration(self, workspace: Path, explicit: str | None = None) -> str:
        if explicit:
            return explicit
        return self._smart_pick(
            key=CONFIGURATION_KEY,
            options=list(self.inspector.list_configurations(workspace)),
            prompt="Select configuration",
            empty_message="No build configurations found",
            shortcut=lambda options: DEFAULT_DEBUG_CONFIGURATION if is_debug_release_pair(options) else None,
        )

    def destination_partition(
        self,
        *,
        scheme: str,
        configuration: str,
        workspace: Path,
        sdk: str | None = None,
        derived_data_path: Path | None = None,
    ) -> Partition:
        platforms = self.inspector.supported_platforms(
            scheme=scheme,
            configuration=configuration,
            workspace=workspace,
            sdk=sdk,
            derived_data_path=derived_data_path,
        )
        destinations = enumerate_destinations(self.simulators, self.devices, arch=self.arch)
        return partition_destinations(destinations, platforms)

    def _pick_destination(self, partition: Partition) -> Destination:
        items = [PickItem(label=format_destination_label(item), value=item) for item in partition.supported]
        items.extend(
            PickItem(label=f"{format_destination_label(item)} [unsupported]", value=item)
            for item in partition.unsupported
        )
        return self.picker.pick("Select destination", items)

    def resolve_destination(
        self,
        *,
        scheme: str,
        configuration: str,
        workspace: Path,
        sdk: str | None = None,
        derived_data_path: Path | None = None,
        destination_id: str | None = None,
        destination_name: str | None = None,
    ) -> Destination:
        partition = self.destination_partition(
            scheme=scheme,
            configuration=configuration,
            workspace=workspace,
            sdk=sdk,
            derived_data_path=derived_data_path,
        )
        everything = [*partition.supported, *partition.unsupported]

        if destination_id:
            for destination in everything:
                if match_destination_id(destination, destination_id):
                    return destination
            raise NotFoundError(f"Destination not found for id: {destination_id}")

        if destination_name:
            matches = Partition(
                supported=[item for item in partition.supported if match_destination_name(item, destination_name)],
                unsupported=[item for item in partition.unsupported if match_destination_name(item, destination_name)],
            )
            count = len(matches.supported) + len(matches.unsupported)
            if count == 0:
                raise NotFoundError(f"Destination not found for name: {destination_name}")
            if count == 1:
                return [*matches.supported, *matches.unsupported][0]
            return self._pick_destination(matches)

        if len(everything) == 1:
            return everything[0]

        remembered = self.memory.get(DESTINATION_KEY)
        if remembered:
            for destination in partition.supported:
                if match_destination_id(destination, str(remembered)):
                    self.console.debug(f"Using remembered destination: {destination.id}")
                    return destination

        selected = self._pick_destination(partition)
        self.memory.remember(DESTINATION_KEY, selected.id)
        return selected


__all__ = [
    "DEFAULT_DEBUG_CONFIGURATION",
    "DEFAULT_RELEASE_CONFIGURATION",
    "PickerOrchestrator",
    "ProjectInspector",
    "detect_xcode_workspaces",
    "is_debug_release_pair",
]
