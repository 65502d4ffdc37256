"""Build and launch orchestration on top of the assembled commands."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import json
import re
import shutil
import tempfile

from .command_runner import CommandResult, CommandRunner
from .commands import BuildRequest, CommandAssembly, assemble_build_command, normalize_args
from .config_loader import resolve_workspace_relative
from .console import Console
from .destinations import (
    Destination,
    DeviceDestination,
    MacOSDestination,
    SimulatorDestination,
    xcodebuild_destination_string,
)
from .errors import PilotError
from .runtime import RuntimeContext
from .toolchain import LaunchSettings, XcodebuildInspector, invoke_tool


@dataclass(slots=True)
class BuildOptions:
    scheme: str
    configuration: str
    workspace: Path
    destination: Destination
    sdk: str
    debug: bool = False
    clean: bool = False
    build: bool = True
    test: bool = False


@dataclass(slots=True)
class LaunchOptions:
    scheme: str
    configuration: str
    workspace: Path
    destination: Destination
    sdk: str
    debug: bool = False
    launch_args: List[str] = field(default_factory=list)
    launch_env: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class BuildPlan:
    assembly: CommandAssembly
    bundle_dir: Path
    pipes: List[List[str]]
    status: str


def prepare_derived_data_path(runtime: RuntimeContext) -> Path | None:
    return resolve_workspace_relative(runtime.workspace_path, runtime.get_config("build.derivedDataPath"))


def prepare_bundle_dir(runtime: RuntimeContext, scheme: str, *, reset: bool = True) -> Path:
    """Return the result bundle path for ``scheme``, removing stale bundles when ``reset``."""

    bundle_root = runtime.storage_path / "bundle"
    bundle_dir = bundle_root / scheme
    if not reset:
        return bundle_dir
    bundle_root.mkdir(parents=True, exist_ok=True)
    shutil.rmtree(bundle_dir, ignore_errors=True)
    shutil.rmtree(bundle_root / f"{scheme}.xcresult", ignore_errors=True)
    return bundle_dir


def destination_string(runtime: RuntimeContext, destination: Destination) -> str:
    rosetta = bool(runtime.get_config_or_default("build.rosettaDestination", False))
    return xcodebuild_destination_string(destination, rosetta=rosetta)


def _string_env(value: Any, *, key: str) -> Dict[str, str | None]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise PilotError(f"{key} must be a mapping of environment variables")
    return {str(name): None if item is None else str(item) for name, item in value.items()}


def _ensure_app_path(path: str | None) -> str:
    if not path:
        raise PilotError("App path is empty. Something went wrong.")
    if not Path(path).exists():
        raise PilotError(f"App path does not exist. Have you built the app? Path: {path}")
    return path


def _xcode_major_version(runner: CommandRunner) -> int:
    output = invoke_tool(runner, ["xcodebuild", "-version"]).stdout
    match = re.search(r"Xcode\s+(\d+)", output)
    return int(match.group(1)) if match else 0


class BuildRunner:
    """Plans and runs ``xcodebuild`` and the launch steps that follow it."""

    def __init__(
        self,
        *,
        runtime: RuntimeContext,
        runner: CommandRunner,
        inspector: XcodebuildInspector,
        console: Console,
        dry_run: bool = False,
    ) -> None:
        self._runtime = runtime
        self._runner = runner
        self._inspector = inspector
        self._console = console
        self._dry_run = dry_run

    def _run(self, command: Sequence[str], **kwargs: Any) -> CommandResult:
        return invoke_tool(self._runner, command, **kwargs)

    def plan(self, options: BuildOptions) -> BuildPlan:
        runtime = self._runtime
        bundle_dir = prepare_bundle_dir(runtime, options.scheme, reset=not self._dry_run)
        derived_data_path = prepare_derived_data_path(runtime)
        try:
            additional_args = normalize_args(runtime.get_config("build.args"))
        except (TypeError, ValueError) as exc:
            raise PilotError(f"Invalid build.args: {exc}") from exc
        request = BuildRequest(
            scheme=options.scheme,
            configuration=options.configuration,
            workspace=str(options.workspace),
            destination=destination_string(runtime, options.destination),
            result_bundle_path=str(bundle_dir),
            arch=runtime.get_config("build.arch") or None,
            debug=options.debug,
            derived_data_path=str(derived_data_path) if derived_data_path else None,
            allow_provisioning_updates=bool(runtime.get_config_or_default("build.allowProvisioningUpdates", True)),
            clean=options.clean,
            build=options.build,
            test=options.test,
            additional_args=additional_args,
            env=_string_env(runtime.get_config("build.env"), key="build.env"),
        )
        assembly = assemble_build_command(request)

        pipes: List[List[str]] = []
        if runtime.get_config_or_default("build.xcbeautifyEnabled", True) and shutil.which("xcbeautify"):
            pipes.append(["xcbeautify"])

        if options.clean:
            status = f'Cleaning "{options.scheme}"'
        else:
            status = f'Building "{options.scheme}"'
        return BuildPlan(assembly=assembly, bundle_dir=bundle_dir, pipes=pipes, status=status)

    def build(self, options: BuildOptions) -> CommandResult:
        plan = self.plan(options)
        for warning in plan.assembly.warnings:
            self._console.warning(warning)
        self._runtime.report_status(plan.status)
        self._console.debug(f"Executing: {self._runner.format_pipeline(plan.assembly.argv, plan.pipes)}")
        result = self._run(
            plan.assembly.argv,
            cwd=self._runtime.workspace_path,
            env=plan.assembly.env,
            stream=True,
            note=plan.status,
            pipes=plan.pipes,
        )
        self._runtime.on_build_completed()
        return result

    def launch_settings(self, options: LaunchOptions | BuildOptions) -> LaunchSettings:
        self._runtime.report_status("Extracting build settings")
        return self._inspector.launch_settings(
            scheme=options.scheme,
            configuration=options.configuration,
            workspace=options.workspace,
            sdk=options.sdk,
            derived_data_path=prepare_derived_data_path(self._runtime),
        )

    def report_build_output(self, options: BuildOptions) -> str | None:
        settings = self.launch_settings(options)
        output_path = settings.app_path or settings.executable_path
        if output_path:
            self._runtime.report_status(f"Build output: {output_path}")
        return output_path

    def _existing(self, path: str | None) -> str:
        if self._dry_run:
            return path or ""
        return _ensure_app_path(path)

    def launch(self, options: LaunchOptions) -> None:
        destination = options.destination
        if isinstance(destination, MacOSDestination):
            self.run_on_mac(options)
        elif isinstance(destination, SimulatorDestination):
            self.run_on_simulator(options, destination)
        elif isinstance(destination, DeviceDestination):
            self.run_on_device(options, destination)
        else:
            raise TypeError(f"Unsupported destination: {destination!r}")

    def run_on_mac(self, options: LaunchOptions) -> None:
        settings = self.launch_settings(options)
        executable = self._existing(settings.executable_path)
        self._runtime.report_status(f'Running "{options.scheme}" on Mac')
        self._run([executable, *options.launch_args], env=dict(options.launch_env), stream=True)

    def run_on_simulator(self, options: LaunchOptions, destination: SimulatorDestination) -> None:
        runtime = self._runtime
        settings = self.launch_settings(options)
        app_path = self._existing(settings.app_path)

        runtime.report_status(f'Searching for simulator "{destination.udid}"')
        simulator = runtime.lookup_target(destination.udid)
        if not isinstance(simulator, SimulatorDestination):
            raise PilotError(f"Destination {destination.udid} is not a simulator")

        if not simulator.is_booted:
            runtime.report_status(f'Booting simulator "{simulator.name}"')
            self._run(["xcrun", "simctl", "boot", simulator.udid], stream=True)
            runtime.on_target_booted()

        runtime.report_status("Launching Simulator.app")
        foreground = runtime.get_config_or_default("build.bringSimulatorToForeground", True)
        self._run(["open", "-a", "Simulator"] if foreground else ["open", "-g", "-a", "Simulator"], stream=True)

        runtime.report_status(f'Installing "{options.scheme}" on "{simulator.name}"')
        self._run(["xcrun", "simctl", "install", simulator.udid, app_path], stream=True)

        command = ["xcrun", "simctl", "launch", "--console-pty"]
        if options.debug:
            command.append("--wait-for-debugger")
        command.extend(["--terminate-running-process", simulator.udid, settings.bundle_identifier or ""])
        command.extend(options.launch_args)
        runtime.report_status(f'Running "{options.scheme}" on "{simulator.name}"')
        self._run(command, env=_prefixed_env("SIMCTL_CHILD_", options.launch_env), stream=True)

    def run_on_device(self, options: LaunchOptions, destination: DeviceDestination) -> None:
        runtime = self._runtime
        settings = self.launch_settings(options)
        app_path = self._existing(settings.app_path)

        runtime.report_status(f'Installing "{options.scheme}" on "{destination.name}"')
        self._run(
            ["xcrun", "devicectl", "device", "install", "app", "--device", destination.udid, app_path],
            stream=True,
        )

        runtime.report_status("Extracting Xcode version")
        console_supported = self._dry_run or _xcode_major_version(self._runner) >= 16

        runtime.storage_path.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="launch-", dir=str(runtime.storage_path)) as scratch:
            json_output = Path(scratch) / "launch.json"
            command: List[str] = ["xcrun", "devicectl", "device", "process", "launch"]
            if console_supported:
                command.append("--console")
            command.extend(
                [
                    "--json-output",
                    str(json_output),
                    "--terminate-existing",
                    "--device",
                    destination.udid,
                    settings.bundle_identifier or "",
                    *options.launch_args,
                ]
            )
            runtime.report_status(f'Running "{options.scheme}" on "{destination.name}"')
            self._run(command, env=_prefixed_env("DEVICECTL_CHILD_", options.launch_env), stream=True)
            if self._dry_run:
                return
            try:
                outcome = json.loads(json_output.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise PilotError("Error reading json output") from exc

        if outcome.get("info", {}).get("outcome") != "success":
            self._console.error("Error launching app on device")
            self._console.error(json.dumps(outcome.get("result"), indent=2))
            return
        pid = outcome.get("result", {}).get("process", {}).get("processIdentifier")
        self._console.info(f"App launched on device with PID: {pid}")


def _prefixed_env(prefix: str, env: Mapping[str, str]) -> Dict[str, str | None]:
    return {f"{prefix}{key}": value for key, value in env.items()}


def parse_list_value(raw: str) -> List[str]:
    """Parse ``--launch-args``: a JSON array or a comma-separated list."""

    trimmed = raw.strip()
    if trimmed.startswith("["):
        parsed = json.loads(trimmed)
        return [str(item) for item in parsed] if isinstance(parsed, list) else []
    if not trimmed:
        return []
    return [value.strip() for value in trimmed.split(",") if value.strip()]


def parse_env_pairs(raw: str) -> Dict[str, str]:
    """Parse ``--launch-env``: a JSON object or ``KEY=VALUE`` pairs separated by commas."""

    trimmed = raw.strip()
    if trimmed.startswith("{"):
        parsed = json.loads(trimmed)
        return {str(key): str(value) for key, value in parsed.items()} if isinstance(parsed, dict) else {}

    env: Dict[str, str] = {}
    for item in trimmed.split(","):
        key, sep, value = item.partition("=")
        if not key.strip() or not sep:
            continue
        env[key.strip()] = value.strip()
    return env


def coerce_launch_args(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            return parse_list_value(value)
        except ValueError as exc:
            raise PilotError(f"build.launchArgs is not a valid list: {exc}") from exc
    if isinstance(value, Sequence):
        return [str(item) for item in value]
    raise PilotError("build.launchArgs must be a list of strings")


def coerce_launch_env(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            return parse_env_pairs(value)
        except ValueError as exc:
            raise PilotError(f"build.launchEnv is not a valid environment: {exc}") from exc
    if isinstance(value, Mapping):
        return {str(key): str(item) for key, item in value.items()}
    raise PilotError("build.launchEnv must be a mapping")
