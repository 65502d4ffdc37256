"""Command line interface for xcpilot."""
from __future__ import annotations

from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List
import sys

from .build import (
    BuildOptions,
    BuildRunner,
    LaunchOptions,
    coerce_launch_args,
    coerce_launch_env,
    parse_env_pairs,
    parse_list_value,
)
from .command_runner import CommandRunner, RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import ConfigStore, resolve_workspace_relative
from .console import Console
from .destinations import Destination
from .errors import PilotError
from .fzf import FzfPicker
from .pickers import PickerOrchestrator
from .runtime import CliRuntimeContext, resolve_storage_path
from .state import SelectionMemory
from .toolchain import DevicectlDeviceSource, SimctlSimulatorSource, XcodebuildInspector

COMMANDS = ("build", "run", "clean", "launch")


@dataclass(slots=True)
class Selection:
    workspace: Path
    scheme: str
    configuration: str
    destination: Destination
    derived_data_path: Path | None


def _launch_args_type(raw: str) -> List[str]:
    try:
        return parse_list_value(raw)
    except ValueError as exc:
        raise ArgumentTypeError(f"invalid launch arguments: {exc}") from exc


def _launch_env_type(raw: str) -> Dict[str, str]:
    try:
        return parse_env_pairs(raw)
    except ValueError as exc:
        raise ArgumentTypeError(f"invalid launch environment: {exc}") from exc


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="xcpilot", description="Build and run Xcode schemes from the terminal")
    parser.add_argument("command", choices=COMMANDS, help="build, run, clean or launch (run with debugging)")
    parser.add_argument("--workspace-root", help="Workspace root (default: current directory)")
    parser.add_argument("--xcworkspace", help="Xcode workspace path")
    parser.add_argument("--scheme", help="Scheme name")
    parser.add_argument("--configuration", help="Build configuration")
    parser.add_argument("--destination-id", dest="destination_id", help="Destination id or UDID")
    parser.add_argument("--destination", dest="destination_name", help="Destination name or label substring")
    parser.add_argument("--sdk", help="Xcode SDK (macosx, iphonesimulator, ...)")
    parser.add_argument("--debug", action="store_true", help="Enable debug build settings")
    parser.add_argument(
        "--launch-args",
        dest="launch_args",
        action="extend",
        type=_launch_args_type,
        default=[],
        metavar="ARGS",
        help="Comma-separated list or JSON array",
    )
    parser.add_argument(
        "--launch-env",
        dest="launch_env",
        action="append",
        type=_launch_env_type,
        default=[],
        metavar="ENV",
        help="KEY=VALUE pairs or JSON object",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print commands without executing them")
    parser.add_argument(
        "--log",
        choices=sorted(Console.LEVELS, key=Console.LEVELS.__getitem__),
        default="info",
        help="Set log level (default: info)",
    )
    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    console = Console(args.log)
    try:
        return _handle_command(args, console)
    except PilotError as exc:
        print(f"xcpilot error: {exc}", file=sys.stderr)
        return 1


def resolve_selection(
    args: Namespace,
    *,
    workspace_root: Path,
    config: ConfigStore,
    orchestrator: PickerOrchestrator,
) -> Selection:
    workspace = orchestrator.resolve_workspace(
        workspace_root,
        args.xcworkspace or config.get("build.xcodeWorkspacePath"),
    )
    scheme = orchestrator.resolve_scheme(workspace, args.scheme)
    configuration = orchestrator.resolve_configuration(
        workspace,
        args.configuration or config.get("build.configuration"),
    )
    derived_data_path = resolve_workspace_relative(workspace_root, config.get("build.derivedDataPath"))
    destination = orchestrator.resolve_destination(
        scheme=scheme,
        configuration=configuration,
        workspace=workspace,
        sdk=args.sdk,
        derived_data_path=derived_data_path,
        destination_id=args.destination_id,
        destination_name=args.destination_name,
    )
    return Selection(
        workspace=workspace,
        scheme=scheme,
        configuration=configuration,
        destination=destination,
        derived_data_path=derived_data_path,
    )


def _handle_command(args: Namespace, console: Console) -> int:
    workspace_root = Path(args.workspace_root or Path.cwd()).expanduser().resolve()
    config = ConfigStore.load(workspace_root)
    storage_path = resolve_storage_path(workspace_root)

    query_runner = SubprocessCommandRunner()
    runner: CommandRunner = RecordingCommandRunner() if args.dry_run else query_runner

    simulators = SimctlSimulatorSource(query_runner)
    devices = DevicectlDeviceSource(query_runner, storage_path, console=console)
    runtime = CliRuntimeContext.create(
        workspace_path=workspace_root,
        storage_path=storage_path,
        config=config,
        console=console,
        simulators=simulators,
        devices=devices,
    )
    inspector = XcodebuildInspector(query_runner, console=console)
    memory = SelectionMemory.load(storage_path, console=console)
    orchestrator = PickerOrchestrator(
        memory=memory,
        picker=FzfPicker(query_runner),
        inspector=inspector,
        simulators=simulators,
        devices=devices,
        console=console,
    )

    selection = resolve_selection(args, workspace_root=workspace_root, config=config, orchestrator=orchestrator)
    if memory.flush():
        console.debug(f"Saved selections to {storage_path}")

    sdk = args.sdk or selection.destination.platform
    debug = True if args.command == "launch" else args.debug
    build_runner = BuildRunner(
        runtime=runtime,
        runner=runner,
        inspector=inspector,
        console=console,
        dry_run=args.dry_run,
    )
    build_options = BuildOptions(
        scheme=selection.scheme,
        configuration=selection.configuration,
        workspace=selection.workspace,
        destination=selection.destination,
        sdk=sdk,
        debug=debug,
        clean=args.command == "clean",
        build=args.command != "clean",
    )
    build_runner.build(build_options)

    if args.command in {"build", "run", "launch"}:
        build_runner.report_build_output(build_options)

    if args.command in {"run", "launch"}:
        launch_env: Dict[str, str] = {}
        for item in args.launch_env:
            launch_env.update(item)
        build_runner.launch(
            LaunchOptions(
                scheme=selection.scheme,
                configuration=selection.configuration,
                workspace=selection.workspace,
                destination=selection.destination,
                sdk=sdk,
                debug=debug,
                launch_args=list(args.launch_args) or coerce_launch_args(config.get("build.launchArgs")),
                launch_env=launch_env or coerce_launch_env(config.get("build.launchEnv")),
            )
        )

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=workspace_root):
            print(line)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
