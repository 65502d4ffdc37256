"""Thin adapters over ``xcodebuild``, ``simctl`` and ``devicectl``."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import json
import os
import re
import tempfile

from .command_runner import CommandError, CommandResult, CommandRunner
from .console import Console
from .destinations import DestinationKind, SimulatorDestination
from .errors import PilotError, ToolMissingError

_RUNTIME_KINDS = (
    ("iOS", DestinationKind.IOS_SIMULATOR),
    ("watchOS", DestinationKind.WATCHOS_SIMULATOR),
    ("tvOS", DestinationKind.TVOS_SIMULATOR),
    ("xrOS", DestinationKind.VISIONOS_SIMULATOR),
    ("visionOS", DestinationKind.VISIONOS_SIMULATOR),
)
_RUNTIME_PATTERN = re.compile(r"SimRuntime\.(?P<family>[A-Za-z]+)-(?P<version>[0-9-]+)$")

_XCODE_HINT = "Install Xcode and its command line tools with `xcode-select --install`."


def invoke_tool(runner: CommandRunner, command: Sequence[str], **kwargs: Any) -> CommandResult:
    """Run ``command`` through ``runner``; a missing binary is a :class:`ToolMissingError`."""

    try:
        return runner.run(command, **kwargs)
    except FileNotFoundError:
        raise ToolMissingError(command[0], _XCODE_HINT) from None


def run_tool(runner: CommandRunner, command: Sequence[str]) -> str:
    """Run an Xcode tool and return its stdout."""

    return invoke_tool(runner, command).stdout


def parse_json_output(text: str) -> Any:
    """Decode JSON printed by a tool that may emit log lines before it."""

    starts = [index for index in (text.find("{"), text.find("[")) if index >= 0]
    if not starts:
        raise PilotError("Tool output does not contain JSON")
    try:
        return json.loads(text[min(starts):])
    except ValueError as exc:
        raise PilotError(f"Failed to decode tool output: {exc}") from exc


@dataclass(slots=True)
class LaunchSettings:
    app_path: str | None
    executable_path: str | None
    bundle_identifier: str | None
    app_name: str | None

    @classmethod
    def from_build_settings(cls, settings: Mapping[str, Any]) -> "LaunchSettings":
        build_dir = settings.get("TARGET_BUILD_DIR")
        product = settings.get("FULL_PRODUCT_NAME")
        executable = settings.get("EXECUTABLE_PATH")
        app_path = os.path.join(build_dir, product) if build_dir and product else None
        executable_path = os.path.join(build_dir, executable) if build_dir and executable else None
        return cls(
            app_path=app_path,
            executable_path=executable_path,
            bundle_identifier=settings.get("PRODUCT_BUNDLE_IDENTIFIER"),
            app_name=product,
        )


class XcodebuildInspector:
    """Reads schemes, configurations and build settings from ``xcodebuild``."""

    def __init__(self, runner: CommandRunner, *, console: Console | None = None) -> None:
        self._runner = runner
        self._console = console

    def _list(self, flag: str, path: Path) -> Mapping[str, Any]:
        stdout = run_tool(self._runner, ["xcodebuild", "-list", "-json", flag, str(path)])
        data = parse_json_output(stdout)
        return data if isinstance(data, Mapping) else {}

    def list_schemes(self, workspace: Path) -> List[str]:
        data = self._list("-workspace", workspace)
        section = data.get("workspace") or data.get("project") or {}
        return [str(name) for name in section.get("schemes", [])]

    def _projects_for(self, workspace: Path) -> List[Path]:
        if workspace.parent.suffix == ".xcodeproj":
            return [workspace.parent]
        return sorted(path for path in workspace.parent.glob("*.xcodeproj") if path.name != "Pods.xcodeproj")

    def list_configurations(self, workspace: Path) -> List[str]:
        configurations: List[str] = []
        for project in self._projects_for(workspace):
            section = self._list("-project", project).get("project") or {}
            for name in section.get("configurations", []):
                if name not in configurations:
                    configurations.append(str(name))
        return configurations

    def build_settings(
        self,
        *,
        scheme: str,
        configuration: str,
        workspace: Path,
        sdk: str | None = None,
        derived_data_path: Path | None = None,
    ) -> List[Mapping[str, Any]]:
        command = [
            "xcodebuild",
            "-showBuildSettings",
            "-json",
            "-scheme",
            scheme,
            "-configuration",
            configuration,
            "-workspace",
            str(workspace),
        ]
        if sdk:
            command.extend(["-sdk", sdk])
        if derived_data_path:
            command.extend(["-derivedDataPath", str(derived_data_path)])
        data = parse_json_output(run_tool(self._runner, command))
        if not isinstance(data, list):
            return []
        return [entry.get("buildSettings", {}) for entry in data if isinstance(entry, Mapping)]

    def supported_platforms(
        self,
        *,
        scheme: str,
        configuration: str,
        workspace: Path,
        sdk: str | None = None,
        derived_data_path: Path | None = None,
    ) -> List[str] | None:
        """Return ``SUPPORTED_PLATFORMS`` for the scheme, or ``None`` if it is unknown."""

        try:
            settings = self.build_settings(
                scheme=scheme,
                configuration=configuration,
                workspace=workspace,
                sdk=sdk,
                derived_data_path=derived_data_path,
            )
        except PilotError as exc:
            if self._console is not None:
                self._console.warning(f"Could not read supported platforms for '{scheme}': {exc}")
            return None
        if not settings:
            return None
        raw = settings[0].get("SUPPORTED_PLATFORMS")
        return str(raw).split() if raw else None

    def launch_settings(
        self,
        *,
        scheme: str,
        configuration: str,
        workspace: Path,
        sdk: str | None = None,
        derived_data_path: Path | None = None,
    ) -> LaunchSettings:
        settings = self.build_settings(
            scheme=scheme,
            configuration=configuration,
            workspace=workspace,
            sdk=sdk,
            derived_data_path=derived_data_path,
        )
        if not settings:
            raise PilotError(f"No build settings reported for scheme '{scheme}'")
        return LaunchSettings.from_build_settings(settings[0])


def simulator_kind_for_runtime(runtime: str) -> tuple[DestinationKind, str] | None:
    match = _RUNTIME_PATTERN.search(runtime)
    if match is None:
        return None
    family = match.group("family")
    for prefix, kind in _RUNTIME_KINDS:
        if family == prefix:
            return kind, match.group("version").replace("-", ".")
    return None


class SimctlSimulatorSource:
    """Lists simulators with ``xcrun simctl list --json devices`` on every call."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def list_simulators(self, *, refresh: bool = True) -> List[SimulatorDestination]:
        stdout = run_tool(self._runner, ["xcrun", "simctl", "list", "--json", "devices"])
        data = parse_json_output(stdout)
        if not isinstance(data, Mapping):
            return []
        simulators: List[SimulatorDestination] = []
        for runtime, entries in (data.get("devices") or {}).items():
            resolved = simulator_kind_for_runtime(runtime)
            if resolved is None:
                continue
            kind, version = resolved
            for entry in entries:
                if not entry.get("isAvailable", True):
                    continue
                simulators.append(
                    SimulatorDestination(
                        kind=kind,
                        udid=str(entry["udid"]),
                        name=str(entry.get("name", entry["udid"])),
                        os_version=version,
                        state=str(entry.get("state", "Shutdown")),
                    )
                )
        return simulators


class DevicectlDeviceSource:
    """Lists connected devices with ``xcrun devicectl list devices``."""

    def __init__(self, runner: CommandRunner, storage_path: Path, *, console: Console | None = None) -> None:
        self._runner = runner
        self._storage_path = storage_path
        self._console = console

    def list_devices(self) -> Sequence[Mapping[str, Any]]:
        self._storage_path.mkdir(parents=True, exist_ok=True)
        fd, output_name = tempfile.mkstemp(prefix="devices-", suffix=".json", dir=str(self._storage_path))
        os.close(fd)
        output_path = Path(output_name)
        try:
            try:
                self._runner.run(["xcrun", "devicectl", "list", "devices", "--json-output", str(output_path)])
            except (CommandError, FileNotFoundError) as exc:
                if self._console is not None:
                    self._console.warning(f"Device listing unavailable: {exc}")
                return []
            text = output_path.read_text(encoding="utf-8")
            if not text.strip():
                return []
            data: Dict[str, Any] = parse_json_output(text)
        finally:
            output_path.unlink(missing_ok=True)
        return list((data.get("result") or {}).get("devices") or [])


__all__ = [
    "DevicectlDeviceSource",
    "LaunchSettings",
    "SimctlSimulatorSource",
    "XcodebuildInspector",
    "invoke_tool",
    "parse_json_output",
    "run_tool",
    "simulator_kind_for_runtime",
]
