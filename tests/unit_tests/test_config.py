"""
Unit tests for configuration.
"""

import os
import unittest
from argparse import Namespace
from unittest.mock import patch

from config import ReconfigConfig


def make_args(**overrides):
    values = dict(
        endpoint="vc01",
        username="administrator@vsphere.local",
        password="vc-secret",
        host_username="root",
        host_password="esx-secret",
        enable_legacy=False,
        hosts=["esx01", "esx02"],
        all_connected=False,
        bypass_version_check=True,
        dry_run=True,
        yes=True,
        verify_ssl=False,
        ssh_port=2222,
        command_timeout=60,
        service_wait_timeout=600,
        probe_timeout=5.0,
        verbose=True,
    )
    values.update(overrides)
    return Namespace(**values)


class TestReconfigConfig(unittest.TestCase):
    """Test ReconfigConfig data model."""

    def test_config_defaults(self):
        """Test default configuration values."""
        config = ReconfigConfig(
            endpoint="vc01",
            username="admin",
            password="pw",
            host_username="root",
            host_password="pw",
            enable_legacy=True,
        )
        self.assertEqual(config.hosts, [])
        self.assertFalse(config.all_connected)
        self.assertFalse(config.bypass_version_check)
        self.assertFalse(config.dry_run)
        self.assertFalse(config.assume_yes)
        self.assertEqual(config.ssh_port, 22)
        self.assertEqual(config.command_timeout, 120)
        self.assertEqual(config.service_wait_timeout, 300)
        self.assertEqual(config.probe_timeout, 10.0)
        self.assertFalse(config.verbose)

    def test_passwords_not_in_repr(self):
        config = ReconfigConfig.from_args(make_args())
        self.assertNotIn("vc-secret", repr(config))
        self.assertNotIn("esx-secret", repr(config))

    def test_config_from_args(self):
        """Test creating config from command-line arguments."""
        config = ReconfigConfig.from_args(make_args())

        self.assertEqual(config.endpoint, "vc01")
        self.assertEqual(config.password, "vc-secret")
        self.assertEqual(config.host_password, "esx-secret")
        self.assertFalse(config.enable_legacy)
        self.assertEqual(config.hosts, ["esx01", "esx02"])
        self.assertTrue(config.bypass_version_check)
        self.assertTrue(config.dry_run)
        self.assertTrue(config.assume_yes)
        self.assertEqual(config.ssh_port, 2222)
        self.assertEqual(config.service_wait_timeout, 600)
        self.assertTrue(config.verbose)

    @patch.dict(os.environ, {"VSPHERE_PASSWORD": "from-env", "ESXI_PASSWORD": "host-env"})
    def test_passwords_from_environment(self):
        config = ReconfigConfig.from_args(make_args(password=None, host_password=None))
        self.assertEqual(config.password, "from-env")
        self.assertEqual(config.host_password, "host-env")

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_password_raises(self):
        with self.assertRaises(ValueError):
            ReconfigConfig.from_args(make_args(host_password=None))


if __name__ == "__main__":
    unittest.main()
