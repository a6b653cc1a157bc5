"""
Unit tests for VSphereServiceManager.
"""

import unittest
from unittest.mock import MagicMock, patch

from collaborators import ProcessState
from errors import ConnectivityError, ServiceUnavailable
from models import HostRef
from service_manager import VSphereServiceManager

HOST = HostRef(name="esx01", host_id="host-10")


def service(key, running):
    entry = MagicMock()
    entry.key = key
    entry.running = running
    return entry


class TestVSphereServiceManagerConnection(unittest.TestCase):
    """Test login, endpoint detection and disconnect."""

    @patch("service_manager.SmartConnect")
    def test_connect_passes_credentials(self, mock_connect):
        manager = VSphereServiceManager("vc01", "admin", "secret", verify_ssl=False)

        manager.connect()

        self.assertIs(manager.si, mock_connect.return_value)
        _, kwargs = mock_connect.call_args
        self.assertEqual(kwargs["host"], "vc01")
        self.assertEqual(kwargs["pwd"], "secret")
        self.assertTrue(kwargs["disableSslCertValidation"])

    @patch("service_manager.SmartConnect")
    def test_connect_network_error(self, mock_connect):
        mock_connect.side_effect = OSError("Connection refused")

        with self.assertRaises(ConnectivityError):
            VSphereServiceManager("vc01", "admin", "secret").connect()

    def test_standalone_detection(self):
        manager = VSphereServiceManager("esx01", "root", "secret")
        manager.si = MagicMock()

        manager.si.content.about.apiType = "HostAgent"
        self.assertTrue(manager.is_standalone_host)

        manager.si.content.about.apiType = "VirtualCenter"
        self.assertFalse(manager.is_standalone_host)

    def test_standalone_detection_requires_connection(self):
        with self.assertRaises(ConnectivityError):
            VSphereServiceManager("esx01", "root", "secret").is_standalone_host

    @patch("service_manager.Disconnect")
    def test_close_disconnects_once(self, mock_disconnect):
        manager = VSphereServiceManager("vc01", "admin", "secret")
        si = MagicMock()
        manager.si = si

        manager.close()
        manager.close()

        mock_disconnect.assert_called_once_with(si)
        self.assertIsNone(manager.si)


def host_system(name, mo_id, state):
    host = MagicMock()
    host.name = name
    host._moId = mo_id
    host.runtime.connectionState = state
    return host


class TestVSphereServiceManagerInventory(unittest.TestCase):
    """Test host lookup over SOAP for vCenter Servers without the REST API."""

    def setUp(self):
        self.manager = VSphereServiceManager("vc01", "admin", "secret")
        self.manager.si = MagicMock()
        content = self.manager.si.RetrieveContent.return_value
        self.view = content.viewManager.CreateContainerView.return_value
        self.view.view = [
            host_system("esx01", "host-10", "connected"),
            host_system("esx02", "host-11", "disconnected"),
        ]

    def test_list_connected_hosts(self):
        hosts = self.manager.list_connected_hosts()

        self.assertEqual([h.name for h in hosts], ["esx01"])
        self.assertEqual(hosts[0].host_id, "host-10")
        self.view.Destroy.assert_called_once()

    def test_resolve_host(self):
        ref = self.manager.resolve_host("esx02")

        self.assertEqual(ref.host_id, "host-11")
        self.assertFalse(ref.connected)
        self.assertIsNone(self.manager.resolve_host("esx09"))

    @patch("service_manager.SmartConnect")
    def test_login_reuses_open_session(self, mock_connect):
        self.manager.login()

        mock_connect.assert_not_called()

    def test_listing_error(self):
        self.manager.si.RetrieveContent.side_effect = OSError("reset")

        with self.assertRaises(ConnectivityError):
            self.manager.list_connected_hosts()


class TestVSphereServiceManagerServices(unittest.TestCase):
    """Test service state and start/stop against a mocked HostServiceSystem."""

    def setUp(self):
        self.manager = VSphereServiceManager("vc01", "admin", "secret")
        self.manager.si = MagicMock()
        self.service_system = MagicMock()
        self.service_system.serviceInfo.service = [
            service("DCUI", True),
            service("TSM-SSH", False),
        ]
        patcher = patch.object(
            VSphereServiceManager, "_service_system", return_value=self.service_system
        )
        self.mock_service_system = patcher.start()
        self.addCleanup(patcher.stop)

    def test_service_state(self):
        self.assertEqual(
            self.manager.get_service_state(HOST, "TSM-SSH"), ProcessState.STOPPED
        )
        self.assertEqual(self.manager.get_service_state(HOST, "dcui"), ProcessState.RUNNING)

    def test_unknown_service(self):
        with self.assertRaises(ServiceUnavailable):
            self.manager.get_service_state(HOST, "vpxa")

    def test_service_listing_error(self):
        self.mock_service_system.side_effect = OSError("reset")

        with self.assertRaises(ConnectivityError):
            self.manager.get_service_state(HOST, "TSM-SSH")

    def test_start_and_stop(self):
        self.manager.start_service(HOST, "TSM-SSH")
        self.manager.stop_service(HOST, "TSM-SSH")

        self.service_system.StartService.assert_called_once_with(id="TSM-SSH")
        self.service_system.StopService.assert_called_once_with(id="TSM-SSH")

    def test_start_failure(self):
        self.service_system.StartService.side_effect = OSError("timed out")

        with self.assertRaises(ServiceUnavailable):
            self.manager.start_service(HOST, "TSM-SSH")


if __name__ == "__main__":
    unittest.main()
