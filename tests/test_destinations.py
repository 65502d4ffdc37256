from __future__ import annotations

from typing import Any, List, Mapping, Sequence
import itertools
import unittest
from unittest.mock import patch

from xcpilot.destinations import (
    DestinationKind,
    DeviceDestination,
    MacOSDestination,
    SimulatorDestination,
    device_from_record,
    enumerate_destinations,
    format_destination_label,
    get_macos_architecture,
    match_destination_id,
    match_destination_name,
    partition_destinations,
    xcodebuild_destination_string,
)
from xcpilot.errors import DestinationClassificationError, NotFoundError


class FakeSimulators:
    def __init__(self, simulators: Sequence[SimulatorDestination]) -> None:
        self.simulators = list(simulators)
        self.calls: List[bool] = []

    def list_simulators(self, *, refresh: bool = True) -> List[SimulatorDestination]:
        self.calls.append(refresh)
        return list(self.simulators)


class FakeDevices:
    def __init__(self, records: Sequence[Mapping[str, Any]]) -> None:
        self.records = list(records)

    def list_devices(self) -> List[Mapping[str, Any]]:
        return list(self.records)


def _device_record(device_type: str, udid: str = "0000-DEVICE", name: str = "Phone") -> Mapping[str, Any]:
    return {
        "identifier": "core-device-id",
        "hardwareProperties": {"deviceType": device_type, "udid": udid, "marketingName": "Marketing"},
        "deviceProperties": {"name": name, "osVersionNumber": "17.4"},
    }


MAC = MacOSDestination(name="My Mac", arch="arm64")
IPHONE_SIM = SimulatorDestination(
    kind=DestinationKind.IOS_SIMULATOR, udid="ABC-123", name="iPhone 15", os_version="17.0", state="Booted"
)
WATCH_SIM = SimulatorDestination(kind=DestinationKind.WATCHOS_SIMULATOR, udid="WAT-1", name="Apple Watch")
IPHONE = DeviceDestination(kind=DestinationKind.IOS_DEVICE, udid="DEV-1", name="Phone", device_type="iPhone")


class DestinationModelTests(unittest.TestCase):
    def test_platform_tags(self) -> None:
        self.assertEqual(MAC.platform, "macosx")
        self.assertEqual(IPHONE_SIM.platform, "iphonesimulator")
        self.assertEqual(WATCH_SIM.platform, "watchsimulator")
        self.assertEqual(IPHONE.platform, "iphoneos")

    def test_ids_are_prefixed_by_kind(self) -> None:
        self.assertEqual(MAC.id, "macos-arm64")
        self.assertEqual(IPHONE_SIM.id, "iOSSimulator-ABC-123")
        self.assertEqual(IPHONE.id, "iOSDevice-DEV-1")

    def test_destinations_are_immutable(self) -> None:
        with self.assertRaises(AttributeError):
            IPHONE_SIM.name = "Other"  # type: ignore[misc]

    def test_simulator_rejects_device_kind(self) -> None:
        with self.assertRaises(ValueError):
            SimulatorDestination(kind=DestinationKind.IOS_DEVICE, udid="x", name="x")

    def test_is_booted(self) -> None:
        self.assertTrue(IPHONE_SIM.is_booted)
        self.assertFalse(WATCH_SIM.is_booted)


class DeviceMappingTests(unittest.TestCase):
    def test_hardware_families(self) -> None:
        expected = {
            "iPhone": DestinationKind.IOS_DEVICE,
            "iPad": DestinationKind.IOS_DEVICE,
            "appleWatch": DestinationKind.WATCHOS_DEVICE,
            "appleTV": DestinationKind.TVOS_DEVICE,
            "appleVision": DestinationKind.VISIONOS_DEVICE,
        }
        for device_type, kind in expected.items():
            with self.subTest(device_type=device_type):
                device = device_from_record(_device_record(device_type))
                self.assertEqual(device.kind, kind)
                self.assertEqual(device.udid, "0000-DEVICE")
                self.assertEqual(device.name, "Phone")
                self.assertEqual(device.os_version, "17.4")

    def test_unknown_family_is_fatal(self) -> None:
        with self.assertRaises(DestinationClassificationError) as ctx:
            device_from_record(_device_record("appleToaster"))
        self.assertEqual(ctx.exception.device_type, "appleToaster")


class EnumerateTests(unittest.TestCase):
    def test_order_is_mac_then_simulators_then_devices(self) -> None:
        simulators = FakeSimulators([IPHONE_SIM, WATCH_SIM])
        devices = FakeDevices([_device_record("iPhone", udid="DEV-9")])

        result = enumerate_destinations(simulators, devices, arch="x86_64")

        self.assertEqual(result[0], MacOSDestination(name="My Mac", arch="x86_64"))
        self.assertEqual(result[1:3], [IPHONE_SIM, WATCH_SIM])
        self.assertIsInstance(result[3], DeviceDestination)
        self.assertEqual(simulators.calls, [True])

    def test_each_call_enumerates_fresh(self) -> None:
        simulators = FakeSimulators([IPHONE_SIM])
        devices = FakeDevices([])

        first = enumerate_destinations(simulators, devices, arch="arm64")
        simulators.simulators = []
        second = enumerate_destinations(simulators, devices, arch="arm64")

        self.assertEqual(len(first), 2)
        self.assertEqual(len(second), 1)

    def test_unknown_device_family_aborts_enumeration(self) -> None:
        with self.assertRaises(DestinationClassificationError):
            enumerate_destinations(FakeSimulators([]), FakeDevices([_device_record("mystery")]), arch="arm64")

    def test_architecture_probe(self) -> None:
        with patch("xcpilot.destinations.platform.machine", return_value="x86_64"):
            self.assertEqual(get_macos_architecture(), "x86_64")
        with patch("xcpilot.destinations.platform.machine", return_value="arm64"):
            self.assertEqual(get_macos_architecture(), "arm64")
        with patch("xcpilot.destinations.platform.machine", return_value="sparc"):
            self.assertIsNone(get_macos_architecture())
            self.assertEqual(enumerate_destinations(FakeSimulators([]), FakeDevices([]))[0].arch, "arm64")


class PartitionTests(unittest.TestCase):
    ALL = [MAC, IPHONE_SIM, WATCH_SIM, IPHONE]

    def test_partition_is_complete_for_every_platform_subset(self) -> None:
        platforms = ["macosx", "iphonesimulator", "watchsimulator", "iphoneos", "xros"]
        for size in range(len(platforms) + 1):
            for subset in itertools.combinations(platforms, size):
                with self.subTest(platforms=subset):
                    partition = partition_destinations(self.ALL, subset)
                    combined = [*partition.supported, *partition.unsupported]
                    self.assertEqual(sorted(combined, key=lambda d: d.id), sorted(self.ALL, key=lambda d: d.id))
                    self.assertEqual(len(combined), len(self.ALL))
                    if subset:
                        for destination in partition.supported:
                            self.assertIn(destination.platform, subset)
                        for destination in partition.unsupported:
                            self.assertNotIn(destination.platform, subset)

    def test_order_is_preserved(self) -> None:
        partition = partition_destinations(self.ALL, ["iphonesimulator", "iphoneos"])

        self.assertEqual(partition.supported, [IPHONE_SIM, IPHONE])
        self.assertEqual(partition.unsupported, [MAC, WATCH_SIM])

    def test_missing_platforms_fail_open(self) -> None:
        for platforms in (None, [], ()):
            with self.subTest(platforms=platforms):
                partition = partition_destinations(self.ALL, platforms)
                self.assertEqual(partition.supported, self.ALL)
                self.assertEqual(partition.unsupported, [])

    def test_nothing_to_run_against(self) -> None:
        with self.assertRaises(NotFoundError):
            partition_destinations([], ["iphoneos"])


class MatchingTests(unittest.TestCase):
    def test_match_by_id_or_udid(self) -> None:
        self.assertTrue(match_destination_id(IPHONE_SIM, "abc-123"))
        self.assertTrue(match_destination_id(IPHONE_SIM, "iOSSimulator-ABC-123"))
        self.assertTrue(match_destination_id(MAC, "MACOS-ARM64"))
        self.assertFalse(match_destination_id(MAC, "arm64"))
        self.assertFalse(match_destination_id(IPHONE_SIM, ""))

    def test_match_by_name(self) -> None:
        self.assertTrue(match_destination_name(IPHONE_SIM, "iphone 15"))
        self.assertTrue(match_destination_name(MAC, "mac"))
        self.assertFalse(match_destination_name(WATCH_SIM, "iphone"))
        self.assertFalse(match_destination_name(WATCH_SIM, "  "))

    def test_label_includes_details(self) -> None:
        self.assertEqual(format_destination_label(IPHONE_SIM), "iPhone 15 (iOS 17.0) - iOS Simulator, booted")
        self.assertEqual(format_destination_label(MAC), "My Mac - arm64")


class DestinationStringTests(unittest.TestCase):
    def test_destination_strings(self) -> None:
        self.assertEqual(xcodebuild_destination_string(MAC), "platform=macOS,arch=arm64")
        self.assertEqual(xcodebuild_destination_string(IPHONE_SIM), "platform=iOS Simulator,id=ABC-123")
        self.assertEqual(
            xcodebuild_destination_string(IPHONE_SIM, rosetta=True),
            "platform=iOS Simulator,id=ABC-123,arch=x86_64",
        )
        self.assertEqual(xcodebuild_destination_string(WATCH_SIM), "platform=watchOS Simulator,id=WAT-1")
        self.assertEqual(xcodebuild_destination_string(IPHONE, rosetta=True), "platform=iOS,id=DEV-1")
