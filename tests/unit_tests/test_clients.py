"""
Unit tests for VSphereRestClient.
"""

import unittest
from unittest.mock import MagicMock, patch

import requests

from clients import SESSION_HEADER, VSphereRestClient
from errors import ConnectivityError


def response(status_code, payload=None, headers=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.headers = headers or {}
    resp.text = str(payload)
    return resp


class TestVSphereRestClient(unittest.TestCase):
    """Test VSphereRestClient REST API interactions."""

    def setUp(self):
        """Set up test fixtures."""
        self.client = VSphereRestClient("vc01", "administrator@vsphere.local", "secret")
        self.session = MagicMock()
        self.session.headers = {}
        self.client.session = self.session

    def test_client_initialization(self):
        """Test client is properly initialised."""
        client = VSphereRestClient("vc01", "admin", "pw")
        self.assertEqual(client.endpoint, "vc01")
        self.assertEqual(client.timeout_s, 60)
        self.assertEqual(client.max_retries, 3)
        self.assertEqual(client.base_delay, 2.0)
        self.assertFalse(client.session.verify)
        self.assertIsNone(client.session_id)

    def test_url_construction(self):
        """Test API URL construction."""
        self.assertEqual(self.client._url("vcenter/host"), "https://vc01/rest/vcenter/host")
        self.assertEqual(
            self.client._url("/com/vmware/cis/session"),
            "https://vc01/rest/com/vmware/cis/session",
        )

    def test_login_sets_session_header(self):
        self.session.request.return_value = response(200, {"value": "token-123"})

        self.client.login()

        self.assertEqual(self.client.session_id, "token-123")
        self.assertEqual(self.session.headers[SESSION_HEADER], "token-123")
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("POST", "https://vc01/rest/com/vmware/cis/session"))
        self.assertEqual(kwargs["auth"], ("administrator@vsphere.local", "secret"))

    def test_login_rejected(self):
        self.session.request.return_value = response(401, {"error_type": "UNAUTHENTICATED"})

        with self.assertRaises(ConnectivityError):
            self.client.login()

    def test_list_connected_hosts(self):
        self.client.session_id = "token"
        self.session.request.return_value = response(
            200,
            {
                "value": [
                    {"host": "host-10", "name": "esx01", "connection_state": "CONNECTED"},
                    {"host": "host-11", "name": "esx02", "connection_state": "CONNECTED"},
                ]
            },
        )

        hosts = self.client.list_connected_hosts()

        self.assertEqual([h.name for h in hosts], ["esx01", "esx02"])
        self.assertEqual(hosts[0].host_id, "host-10")
        self.assertTrue(all(h.connected for h in hosts))
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["params"], {"filter.connection_states": "CONNECTED"})

    def test_resolve_host_found(self):
        self.client.session_id = "token"
        self.session.request.return_value = response(
            200,
            {"value": [{"host": "host-12", "name": "esx03", "connection_state": "DISCONNECTED"}]},
        )

        ref = self.client.resolve_host("esx03")

        self.assertEqual(ref.host_id, "host-12")
        self.assertFalse(ref.connected)

    def test_resolve_host_not_found(self):
        self.client.session_id = "token"
        self.session.request.return_value = response(200, {"value": []})

        self.assertIsNone(self.client.resolve_host("missing"))

    def test_response_without_envelope_is_rejected(self):
        self.client.session_id = "token"
        self.session.request.return_value = response(200, [{"host": "host-12", "name": "esx03"}])

        with self.assertRaises(ConnectivityError):
            self.client.list_connected_hosts()

    def test_listing_requires_login(self):
        with self.assertRaises(ConnectivityError):
            self.client.list_connected_hosts()

    @patch("clients.time.sleep")
    def test_request_with_retry_on_503(self, mock_sleep):
        """Test retry logic on transient server errors."""
        self.session.request.side_effect = [response(503, "busy"), response(200, [])]

        result = self.client._request_with_retry("GET", "https://vc01/rest/vcenter/host")

        self.assertEqual(result.status_code, 200)
        self.assertEqual(self.session.request.call_count, 2)
        self.assertTrue(mock_sleep.called)

    @patch("clients.time.sleep")
    def test_request_gives_up_after_max_retries(self, mock_sleep):
        self.session.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(ConnectivityError):
            self.client._request_with_retry("GET", "https://vc01/rest/vcenter/host")
        self.assertEqual(self.session.request.call_count, self.client.max_retries + 1)

    def test_calculate_delay_with_retry_after_header(self):
        """Test delay calculation when Retry-After header is present."""
        delay = self.client._calculate_delay(0, response(429, headers={"Retry-After": "10"}))
        self.assertEqual(delay, 10.0)

    def test_calculate_delay_is_capped(self):
        self.assertLessEqual(self.client._calculate_delay(10), 60.0)

    def test_logout_clears_session(self):
        self.client.session_id = "token"
        self.session.headers[SESSION_HEADER] = "token"
        self.session.request.return_value = response(204)

        self.client.logout()

        self.assertIsNone(self.client.session_id)
        self.assertNotIn(SESSION_HEADER, self.session.headers)


if __name__ == "__main__":
    unittest.main()
