"""Execution targets and the scheme compatibility filter."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, NamedTuple, Protocol, Sequence, Union
import platform

from .errors import DestinationClassificationError, NotFoundError


class DestinationKind(str, Enum):
    MACOS = "macOS"
    IOS_SIMULATOR = "iOSSimulator"
    WATCHOS_SIMULATOR = "watchOSSimulator"
    TVOS_SIMULATOR = "tvOSSimulator"
    VISIONOS_SIMULATOR = "visionOSSimulator"
    IOS_DEVICE = "iOSDevice"
    WATCHOS_DEVICE = "watchOSDevice"
    TVOS_DEVICE = "tvOSDevice"
    VISIONOS_DEVICE = "visionOSDevice"


SIMULATOR_KINDS = frozenset(
    {
        DestinationKind.IOS_SIMULATOR,
        DestinationKind.WATCHOS_SIMULATOR,
        DestinationKind.TVOS_SIMULATOR,
        DestinationKind.VISIONOS_SIMULATOR,
    }
)
DEVICE_KINDS = frozenset(
    {
        DestinationKind.IOS_DEVICE,
        DestinationKind.WATCHOS_DEVICE,
        DestinationKind.TVOS_DEVICE,
        DestinationKind.VISIONOS_DEVICE,
    }
)

# kind -> (sdk platform tag, xcodebuild -destination platform name, OS family label)
_KIND_TRAITS: Mapping[DestinationKind, tuple[str, str, str]] = {
    DestinationKind.MACOS: ("macosx", "macOS", "macOS"),
    DestinationKind.IOS_SIMULATOR: ("iphonesimulator", "iOS Simulator", "iOS"),
    DestinationKind.WATCHOS_SIMULATOR: ("watchsimulator", "watchOS Simulator", "watchOS"),
    DestinationKind.TVOS_SIMULATOR: ("appletvsimulator", "tvOS Simulator", "tvOS"),
    DestinationKind.VISIONOS_SIMULATOR: ("xrsimulator", "visionOS Simulator", "visionOS"),
    DestinationKind.IOS_DEVICE: ("iphoneos", "iOS", "iOS"),
    DestinationKind.WATCHOS_DEVICE: ("watchos", "watchOS", "watchOS"),
    DestinationKind.TVOS_DEVICE: ("appletvos", "tvOS", "tvOS"),
    DestinationKind.VISIONOS_DEVICE: ("xros", "visionOS", "visionOS"),
}

_DEVICE_TYPE_KINDS: Mapping[str, DestinationKind] = {
    "iPhone": DestinationKind.IOS_DEVICE,
    "iPad": DestinationKind.IOS_DEVICE,
    "appleWatch": DestinationKind.WATCHOS_DEVICE,
    "appleTV": DestinationKind.TVOS_DEVICE,
    "appleVision": DestinationKind.VISIONOS_DEVICE,
}


def _traits(kind: DestinationKind) -> tuple[str, str, str]:
    try:
        return _KIND_TRAITS[kind]
    except KeyError:
        raise ValueError(f"Unknown destination kind: {kind!r}") from None


@dataclass(frozen=True, slots=True)
class MacOSDestination:
    name: str
    arch: str

    @property
    def kind(self) -> DestinationKind:
        return DestinationKind.MACOS

    @property
    def id(self) -> str:
        return f"macos-{self.arch}"

    @property
    def platform(self) -> str:
        return _traits(self.kind)[0]

    @property
    def label(self) -> str:
        return self.name

    @property
    def details(self) -> str:
        return self.arch


@dataclass(frozen=True, slots=True)
class SimulatorDestination:
    kind: DestinationKind
    udid: str
    name: str
    os_version: str | None = None
    state: str = "Shutdown"

    def __post_init__(self) -> None:
        if self.kind not in SIMULATOR_KINDS:
            raise ValueError(f"{self.kind!r} is not a simulator kind")

    @property
    def id(self) -> str:
        return f"{self.kind.value}-{self.udid}"

    @property
    def platform(self) -> str:
        return _traits(self.kind)[0]

    @property
    def is_booted(self) -> bool:
        return self.state == "Booted"

    @property
    def label(self) -> str:
        if self.os_version:
            return f"{self.name} ({_traits(self.kind)[2]} {self.os_version})"
        return self.name

    @property
    def details(self) -> str:
        return f"{_traits(self.kind)[1]}, {self.state.lower()}"


@dataclass(frozen=True, slots=True)
class DeviceDestination:
    kind: DestinationKind
    udid: str
    name: str
    device_type: str
    os_version: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in DEVICE_KINDS:
            raise ValueError(f"{self.kind!r} is not a device kind")

    @property
    def id(self) -> str:
        return f"{self.kind.value}-{self.udid}"

    @property
    def platform(self) -> str:
        return _traits(self.kind)[0]

    @property
    def label(self) -> str:
        if self.os_version:
            return f"{self.name} ({_traits(self.kind)[2]} {self.os_version})"
        return self.name

    @property
    def details(self) -> str:
        return f"{self.device_type}, {self.udid}"


Destination = Union[MacOSDestination, SimulatorDestination, DeviceDestination]


class Partition(NamedTuple):
    supported: List[Destination]
    unsupported: List[Destination]


class SimulatorSource(Protocol):
    def list_simulators(self, *, refresh: bool = True) -> Sequence[SimulatorDestination]:
        ...


class DeviceSource(Protocol):
    def list_devices(self) -> Sequence[Mapping[str, Any]]:
        ...


def get_macos_architecture() -> str | None:
    machine = platform.machine().lower()
    if machine in {"arm64", "aarch64"}:
        return "arm64"
    if machine in {"x86_64", "amd64"}:
        return "x86_64"
    return None


def device_from_record(record: Mapping[str, Any]) -> DeviceDestination:
    """Map one ``devicectl`` device record onto a destination.

    Raises :class:`DestinationClassificationError` for hardware families that
    have no destination kind.
    """

    hardware = record.get("hardwareProperties") or {}
    device_props = record.get("deviceProperties") or {}
    device_type = str(hardware.get("deviceType", ""))
    udid = str(hardware.get("udid") or record.get("identifier") or "")
    kind = _DEVICE_TYPE_KINDS.get(device_type)
    if kind is None:
        raise DestinationClassificationError(device_type, udid=udid or None)
    name = device_props.get("name") or hardware.get("marketingName") or device_type
    os_version = device_props.get("osVersionNumber")
    return DeviceDestination(
        kind=kind,
        udid=udid,
        name=str(name),
        device_type=device_type,
        os_version=str(os_version) if os_version else None,
    )


def enumerate_destinations(
    simulators: SimulatorSource,
    devices: DeviceSource,
    *,
    arch: str | None = None,
) -> List[Destination]:
    """Return the local machine, then live simulators, then connected devices."""

    destinations: List[Destination] = [MacOSDestination(name="My Mac", arch=arch or get_macos_architecture() or "arm64")]
    destinations.extend(simulators.list_simulators(refresh=True))
    destinations.extend(device_from_record(record) for record in devices.list_devices())
    return destinations


def is_supported(destination: Destination, supported_platforms: Iterable[str] | None) -> bool:
    platforms = set(supported_platforms or ())
    if not platforms:
        return True
    return destination.platform in platforms


def partition_destinations(
    destinations: Iterable[Destination],
    supported_platforms: Iterable[str] | None,
) -> Partition:
    """Split ``destinations`` by the platforms a scheme declares.

    When the scheme declares nothing every destination counts as supported.
    Unsupported destinations are kept so they can still be picked on purpose.
    """

    platforms = list(supported_platforms or ())
    partition = Partition(supported=[], unsupported=[])
    for destination in destinations:
        if is_supported(destination, platforms):
            partition.supported.append(destination)
        else:
            partition.unsupported.append(destination)
    if not partition.supported and not partition.unsupported:
        raise NotFoundError("No destinations found")
    return partition


def match_destination_id(destination: Destination, target_id: str) -> bool:
    normalized = target_id.strip().lower()
    if not normalized:
        return False
    if destination.id.lower() == normalized:
        return True
    if isinstance(destination, (SimulatorDestination, DeviceDestination)):
        return destination.udid.lower() == normalized
    return False


def match_destination_name(destination: Destination, name: str) -> bool:
    normalized = name.strip().lower()
    if not normalized:
        return False
    return (
        normalized in destination.label.lower()
        or normalized in destination.name.lower()
        or normalized in destination.id.lower()
    )


def format_destination_label(destination: Destination) -> str:
    detail = destination.details
    return f"{destination.label} - {detail}" if detail else destination.label


def _destination_string(platform_name: str, *, target_id: str | None = None, arch: str | None = None) -> str:
    parts = [f"platform={platform_name}"]
    if target_id:
        parts.append(f"id={target_id}")
    if arch:
        parts.append(f"arch={arch}")
    return ",".join(parts)


def xcodebuild_destination_string(destination: Destination, *, rosetta: bool = False) -> str:
    """Render ``destination`` as an ``xcodebuild -destination`` specifier."""

    platform_name = _traits(destination.kind)[1]
    if isinstance(destination, MacOSDestination):
        return _destination_string(platform_name, arch=destination.arch)
    if isinstance(destination, SimulatorDestination):
        return _destination_string(platform_name, target_id=destination.udid, arch="x86_64" if rosetta else None)
    if isinstance(destination, DeviceDestination):
        return _destination_string(platform_name, target_id=destination.udid)
    raise TypeError(f"Unsupported destination: {destination!r}")


__all__ = [
    "DEVICE_KINDS",
    "Destination",
    "DestinationKind",
    "DeviceDestination",
    "DeviceSource",
    "MacOSDestination",
    "Partition",
    "SIMULATOR_KINDS",
    "SimulatorDestination",
    "SimulatorSource",
    "device_from_record",
    "enumerate_destinations",
    "format_destination_label",
    "get_macos_architecture",
    "is_supported",
    "match_destination_id",
    "match_destination_name",
    "partition_destinations",
    "xcodebuild_destination_string",
]
