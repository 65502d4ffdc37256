from __future__ import annotations

import unittest

from xcpilot.commands import (
    BuildRequest,
    XcodebuildCommand,
    assemble_build_command,
    normalize_args,
)


def _request(**overrides) -> BuildRequest:
    values = dict(
        scheme="MyApp",
        configuration="Debug",
        workspace="/work/MyApp.xcworkspace",
        destination="platform=iOS Simulator,id=ABC-123",
        result_bundle_path="/work/.xcpilot/bundle/MyApp",
    )
    values.update(overrides)
    return BuildRequest(**values)


class XcodebuildCommandTests(unittest.TestCase):
    def test_classes_render_in_fixed_order(self) -> None:
        command = XcodebuildCommand()
        command.add_action("build")
        command.add_parameter("-scheme", "MyApp")
        command.add_build_setting("ARCHS", "arm64")
        command.add_option("-quiet")

        self.assertEqual(command.build(), ["xcodebuild", "ARCHS=arm64", "-scheme", "MyApp", "-quiet", "build"])

    def test_redeclared_setting_keeps_first_position_and_last_value(self) -> None:
        command = XcodebuildCommand()
        command.add_build_setting("ARCHS", "x86_64")
        command.add_build_setting("CODE_SIGNING_ALLOWED", "NO")
        command.add_build_setting("ARCHS", "arm64")

        self.assertEqual(command.build(), ["xcodebuild", "ARCHS=arm64", "CODE_SIGNING_ALLOWED=NO"])

    def test_redeclared_parameter_keeps_first_position(self) -> None:
        command = XcodebuildCommand()
        command.add_parameter("-scheme", "Old")
        command.add_parameter("-configuration", "Debug")
        command.add_additional_args(["-scheme", "New"])

        self.assertEqual(command.build(), ["xcodebuild", "-scheme", "New", "-configuration", "Debug"])

    def test_option_overridden_by_valued_parameter(self) -> None:
        command = XcodebuildCommand()
        command.add_option("-allowProvisioningUpdates")
        command.add_additional_args(["-allowProvisioningUpdates", "YES"])

        self.assertEqual(command.build(), ["xcodebuild", "-allowProvisioningUpdates", "YES"])

    def test_duplicate_actions_collapse(self) -> None:
        command = XcodebuildCommand()
        command.add_action("clean")
        command.add_action("build")
        command.add_additional_args(["clean", "test"])

        self.assertEqual(command.build(), ["xcodebuild", "clean", "build", "test"])

    def test_mixed_free_form_tokens(self) -> None:
        command = XcodebuildCommand()
        command.add_additional_args(["-quiet", "ARCHS=arm64", "clean"])
        argv = command.build()

        self.assertEqual(argv, ["xcodebuild", "ARCHS=arm64", "-quiet", "clean"])
        for token in ("-quiet", "ARCHS=arm64", "clean"):
            self.assertEqual(argv.count(token), 1)
        self.assertEqual(command.warnings, [])

    def test_flag_followed_by_flag_is_bare(self) -> None:
        command = XcodebuildCommand()
        command.add_additional_args(["-quiet", "-sdk", "iphonesimulator", "-verbose"])

        self.assertEqual(command.build(), ["xcodebuild", "-quiet", "-sdk", "iphonesimulator", "-verbose"])

    def test_flag_consumes_value_containing_equals(self) -> None:
        command = XcodebuildCommand()
        command.add_additional_args(["-destination", "platform=macOS"])

        self.assertEqual(command.build(), ["xcodebuild", "-destination", "platform=macOS"])

    def test_setting_splits_on_first_equals(self) -> None:
        command = XcodebuildCommand()
        command.add_additional_args(["OTHER_SWIFT_FLAGS=-D FOO=1"])

        self.assertEqual(command.build_settings, [("OTHER_SWIFT_FLAGS", "-D FOO=1")])

    def test_unrecognized_token_is_dropped_with_warning(self) -> None:
        command = XcodebuildCommand()
        command.add_additional_args(["???"])
        argv = command.build()

        self.assertNotIn("???", argv)
        self.assertEqual(argv, ["xcodebuild"])
        self.assertEqual(len(command.warnings), 1)
        self.assertIn("???", command.warnings[0])

    def test_no_sentinel_in_output(self) -> None:
        command = XcodebuildCommand()
        command.add_option("-quiet")
        argv = command.build()

        self.assertEqual(argv, ["xcodebuild", "-quiet"])
        self.assertTrue(all(isinstance(part, str) for part in argv))
        self.assertNotIn("NO_VALUE", " ".join(argv))


class AssembleBuildCommandTests(unittest.TestCase):
    def test_default_request(self) -> None:
        assembly = assemble_build_command(_request())

        self.assertEqual(
            assembly.argv,
            [
                "xcodebuild",
                "-scheme",
                "MyApp",
                "-configuration",
                "Debug",
                "-workspace",
                "/work/MyApp.xcworkspace",
                "-destination",
                "platform=iOS Simulator,id=ABC-123",
                "-resultBundlePath",
                "/work/.xcpilot/bundle/MyApp",
                "-allowProvisioningUpdates",
                "build",
            ],
        )
        self.assertEqual(assembly.warnings, [])

    def test_arch_and_debug_settings_share_only_active_arch(self) -> None:
        assembly = assemble_build_command(_request(arch="arm64", debug=True))

        self.assertEqual(
            assembly.argv[1:5],
            ["ARCHS=arm64", "VALID_ARCHS=arm64", "ONLY_ACTIVE_ARCH=YES", "GCC_GENERATE_DEBUGGING_SYMBOLS=YES"],
        )

    def test_optional_parameters_and_actions(self) -> None:
        assembly = assemble_build_command(
            _request(
                derived_data_path="/tmp/dd",
                allow_provisioning_updates=False,
                clean=True,
                build=True,
                test=True,
            )
        )

        self.assertIn("-derivedDataPath", assembly.argv)
        self.assertNotIn("-allowProvisioningUpdates", assembly.argv)
        self.assertEqual(assembly.argv[-3:], ["clean", "build", "test"])

    def test_free_form_tokens_override_structured_values(self) -> None:
        assembly = assemble_build_command(
            _request(additional_args=["-configuration", "Release", "ONLY_ACTIVE_ARCH=NO", "???"], debug=True)
        )

        self.assertEqual(assembly.argv.count("-configuration"), 1)
        index = assembly.argv.index("-configuration")
        self.assertEqual(assembly.argv[index + 1], "Release")
        self.assertEqual(assembly.argv[1], "GCC_GENERATE_DEBUGGING_SYMBOLS=YES")
        self.assertEqual(assembly.argv[2], "ONLY_ACTIVE_ARCH=NO")
        self.assertNotIn("???", assembly.argv)
        self.assertEqual(len(assembly.warnings), 1)

    def test_environment_is_carried_alongside(self) -> None:
        assembly = assemble_build_command(_request(env={"FOO": "bar", "UNSET_ME": None}))

        self.assertEqual(assembly.env, {"FOO": "bar", "UNSET_ME": None})
        self.assertNotIn("FOO=bar", assembly.argv)


class NormalizeArgsTests(unittest.TestCase):
    def test_string_is_split_like_a_shell(self) -> None:
        self.assertEqual(normalize_args("-quiet 'OTHER_FLAGS=-a -b'"), ["-quiet", "OTHER_FLAGS=-a -b"])

    def test_list_and_none(self) -> None:
        self.assertEqual(normalize_args(["-quiet", 1]), ["-quiet", "1"])
        self.assertEqual(normalize_args(None), [])

    def test_rejects_other_types(self) -> None:
        with self.assertRaises(TypeError):
            normalize_args(3)
