"""Assembly of ``xcodebuild`` argument vectors."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, Iterable, List, Sequence, Tuple, TypeVar
import shlex

XCODEBUILD = "xcodebuild"
ACTIONS = ("clean", "build", "test")

_T = TypeVar("_T")


class _NoValue:
    __slots__ = ()

    def __repr__(self) -> str:
        return "NO_VALUE"


NO_VALUE = _NoValue()
"""Marks a parameter that is a bare flag."""


def _dedupe_keep_first_position(items: Sequence[_T], key: Callable[[_T], Hashable]) -> List[_T]:
    """Keep the last value for each key, placed where the key first appeared."""

    latest: Dict[Hashable, _T] = {}
    for item in items:
        latest[key(item)] = item
    result: List[_T] = []
    emitted: set[Hashable] = set()
    for item in items:
        item_key = key(item)
        if item_key in emitted:
            continue
        emitted.add(item_key)
        result.append(latest[item_key])
    return result


class XcodebuildCommand:
    """Collects build settings, parameters and actions for one invocation."""

    def __init__(self, program: str = XCODEBUILD) -> None:
        self.program = program
        self.build_settings: List[Tuple[str, str]] = []
        self.parameters: List[Tuple[str, str | _NoValue]] = []
        self.actions: List[str] = []
        self.warnings: List[str] = []

    def add_build_setting(self, key: str, value: str) -> None:
        self.build_settings.append((key, value))

    def add_option(self, flag: str) -> None:
        self.parameters.append((flag, NO_VALUE))

    def add_parameter(self, flag: str, value: str) -> None:
        self.parameters.append((flag, value))

    def add_action(self, action: str) -> None:
        self.actions.append(action)

    def add_additional_args(self, args: Sequence[str]) -> None:
        """Classify free-form tokens the way they would read after ``xcodebuild``.

        Tokens that fit no class are dropped and reported in :attr:`warnings`.
        """

        index = 0
        while index < len(args):
            current = args[index]
            following = args[index + 1] if index + 1 < len(args) else None
            if current.startswith("-"):
                if following is not None and not following.startswith("-"):
                    self.add_parameter(current, following)
                    index += 2
                    continue
                self.add_option(current)
            elif "=" in current:
                key, _, value = current.partition("=")
                self.add_build_setting(key, value)
            elif current in ACTIONS:
                self.add_action(current)
            else:
                self.warnings.append(f"Ignoring unrecognized xcodebuild argument: {current!r}")
            index += 1

    def dedupe(self) -> None:
        self.build_settings = _dedupe_keep_first_position(self.build_settings, key=lambda item: item[0])
        self.parameters = _dedupe_keep_first_position(self.parameters, key=lambda item: item[0])
        self.actions = _dedupe_keep_first_position(self.actions, key=lambda item: item)

    def build(self) -> List[str]:
        self.dedupe()
        parts = [self.program]
        for key, value in self.build_settings:
            parts.append(f"{key}={value}")
        for flag, value in self.parameters:
            parts.append(flag)
            if value is not NO_VALUE:
                parts.append(str(value))
        parts.extend(self.actions)
        return parts


@dataclass(slots=True)
class BuildRequest:
    scheme: str
    configuration: str
    workspace: str
    destination: str
    result_bundle_path: str
    arch: str | None = None
    debug: bool = False
    derived_data_path: str | None = None
    allow_provisioning_updates: bool = True
    clean: bool = False
    build: bool = True
    test: bool = False
    additional_args: List[str] = field(default_factory=list)
    env: Dict[str, str | None] = field(default_factory=dict)


@dataclass(slots=True)
class CommandAssembly:
    argv: List[str]
    env: Dict[str, str | None]
    warnings: List[str]


def assemble_build_command(request: BuildRequest, *, program: str = XCODEBUILD) -> CommandAssembly:
    """Turn ``request`` into an ordered, deduplicated ``xcodebuild`` invocation."""

    command = XcodebuildCommand(program)
    if request.arch:
        command.add_build_setting("ARCHS", request.arch)
        command.add_build_setting("VALID_ARCHS", request.arch)
        command.add_build_setting("ONLY_ACTIVE_ARCH", "NO")
    if request.debug:
        command.add_build_setting("GCC_GENERATE_DEBUGGING_SYMBOLS", "YES")
        command.add_build_setting("ONLY_ACTIVE_ARCH", "YES")

    command.add_parameter("-scheme", request.scheme)
    command.add_parameter("-configuration", request.configuration)
    command.add_parameter("-workspace", request.workspace)
    command.add_parameter("-destination", request.destination)
    command.add_parameter("-resultBundlePath", request.result_bundle_path)
    if request.derived_data_path:
        command.add_parameter("-derivedDataPath", request.derived_data_path)
    if request.allow_provisioning_updates:
        command.add_option("-allowProvisioningUpdates")

    if request.clean:
        command.add_action("clean")
    if request.build:
        command.add_action("build")
    if request.test:
        command.add_action("test")

    command.add_additional_args(request.additional_args)
    return CommandAssembly(argv=command.build(), env=dict(request.env), warnings=list(command.warnings))


def normalize_args(value: object) -> List[str]:
    """Coerce a configured ``build.args`` value into a token list."""

    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, Iterable):
        return [str(item) for item in value if item is not None]
    raise TypeError("build.args must be a string or a list of strings")
