"""
Unit tests for host version classification.
"""

import itertools
import unittest

from errors import ConnectivityError, VersionParseError, VersionUnsupported
from fakes import VERSION_50, VERSION_51, VERSION_55, VERSION_55_OLD, FakeChannel, fail
from models import HostVariant
from version_gate import (
    VersionGate,
    compare_versions,
    evaluate,
    normalize_version,
    parse_version_output,
)


class TestVersionComparison(unittest.TestCase):
    """Segment-padded comparison must agree with numeric comparison."""

    def test_two_digit_segment_sorts_above_one_digit(self):
        self.assertGreater(compare_versions("5.10.0", "5.2.0"), 0)
        self.assertLess(compare_versions("5.2.0", "5.10.0"), 0)
        self.assertLess("5.10.0", "5.2.0")  # raw string order disagrees

    def test_matches_numeric_tuple_comparison(self):
        segments = [0, 1, 2, 5, 9, 10, 55, 100]
        triples = list(itertools.product(segments, [0, 1, 10], [0, 3]))
        for a, b in itertools.product(triples, repeat=2):
            expected = (a > b) - (a < b)
            with self.subTest(a=a, b=b):
                self.assertEqual(
                    compare_versions(".".join(map(str, a)), ".".join(map(str, b))),
                    expected,
                )

    def test_normalize_pads_each_segment(self):
        self.assertEqual(normalize_version("5.5.0"), "  5  5  0")


class TestParseVersionOutput(unittest.TestCase):
    """Test parsing of `esxcli system version get`."""

    def test_parses_release_update_build(self):
        self.assertEqual(parse_version_output(VERSION_55), ("5.5.0", 3, 3248547))

    def test_missing_fields_are_none(self):
        self.assertEqual(parse_version_output("Product: VMware ESXi\n"), (None, None, None))

    def test_garbled_numbers_are_none(self):
        release, update, build = parse_version_output("Version: 5.1.0\nBuild: unknown\nUpdate: n/a\n")
        self.assertEqual(release, "5.1.0")
        self.assertIsNone(update)
        self.assertIsNone(build)


class TestEvaluate(unittest.TestCase):
    """Test baseline thresholds."""

    def test_known_baselines(self):
        self.assertEqual(evaluate("5.5.0", 3, 3248547).variant, HostVariant.BASELINE)
        self.assertEqual(evaluate("5.1.0", 3, 3872664).variant, HostVariant.LEGACY_A)
        self.assertEqual(evaluate("5.0.0", 3, 3982828).variant, HostVariant.LEGACY_B)

    def test_newer_builds_are_accepted(self):
        self.assertEqual(evaluate("5.5.0", 3, 4179633).variant, HostVariant.BASELINE)

    def test_below_threshold_is_unsupported(self):
        self.assertEqual(evaluate("5.5.0", 2, 3248547).variant, HostVariant.UNSUPPORTED)
        self.assertEqual(evaluate("5.5.0", 3, 3248546).variant, HostVariant.UNSUPPORTED)
        self.assertEqual(evaluate("5.5.0", None, None).variant, HostVariant.UNSUPPORTED)

    def test_unknown_release_is_unsupported(self):
        info = evaluate("6.0.0", 3, 9999999)
        self.assertEqual(info.variant, HostVariant.UNSUPPORTED)
        self.assertIsNone(info.family)


class TestVersionGate(unittest.TestCase):
    """Test VersionGate.resolve."""

    def test_supported_variants(self):
        gate = VersionGate()
        self.assertEqual(gate.resolve(FakeChannel(VERSION_55), "esx01"), HostVariant.BASELINE)
        self.assertEqual(gate.resolve(FakeChannel(VERSION_51), "esx01"), HostVariant.LEGACY_A)
        self.assertEqual(gate.resolve(FakeChannel(VERSION_50), "esx01"), HostVariant.LEGACY_B)

    def test_unsupported_raises(self):
        with self.assertRaises(VersionUnsupported):
            VersionGate().resolve(FakeChannel(VERSION_55_OLD), "esx01")

    def test_bypass_logs_and_uses_release_family(self):
        gate = VersionGate(bypass=True)
        old_51 = VERSION_51.replace("3872664", "1065491")
        with self.assertLogs("version_gate", level="WARNING") as logs:
            variant = gate.resolve(FakeChannel(old_51), "esx01")
        self.assertEqual(variant, HostVariant.LEGACY_A)
        self.assertIn("NOT supported", logs.output[0])

    def test_bypass_unknown_release_falls_back_to_baseline(self):
        gate = VersionGate(bypass=True)
        output = VERSION_55.replace("5.5.0", "6.0.0")
        with self.assertLogs("version_gate", level="WARNING"):
            self.assertEqual(gate.resolve(FakeChannel(output), "esx01"), HostVariant.BASELINE)

    def test_unparsable_output(self):
        channel = FakeChannel("garbage")
        with self.assertRaises(VersionParseError):
            VersionGate().resolve(channel, "esx01")
        with self.assertLogs("version_gate", level="WARNING"):
            self.assertEqual(
                VersionGate(bypass=True).resolve(channel, "esx01"), HostVariant.BASELINE
            )

    def test_failed_query_is_connectivity_error(self):
        channel = FakeChannel()
        channel.respond("system version get", fail("connection reset"))
        with self.assertRaises(ConnectivityError):
            VersionGate(bypass=True).resolve(channel, "esx01")


if __name__ == "__main__":
    unittest.main()
