"""
Unit tests for the handshake protocol probe.
"""

import struct
import unittest
from unittest.mock import MagicMock, patch

from errors import ConnectivityError
from probe import (
    CONTENT_HANDSHAKE,
    HANDSHAKE_CLIENT_HELLO,
    TLSProtocolProbe,
    build_client_hello,
    parse_server_hello_version,
)


def server_hello(version):
    body_head = struct.pack("!B", 0x02) + b"\x00\x00\x46" + struct.pack("!H", version)
    return struct.pack("!BHH", CONTENT_HANDSHAKE, version, 0x4A) + body_head


ALERT = b"\x15\x03\x01\x00\x02\x02\x46"


def fake_socket(reply):
    sock = MagicMock()
    sock.__enter__.return_value = sock
    buffer = bytearray(reply)

    def recv(size):
        chunk = bytes(buffer[:size])
        del buffer[:size]
        return chunk

    sock.recv.side_effect = recv
    return sock


class TestClientHello(unittest.TestCase):
    def test_record_layout(self):
        hello = build_client_hello(0x0303)

        self.assertEqual(hello[0], CONTENT_HANDSHAKE)
        self.assertEqual(struct.unpack("!H", hello[1:3])[0], 0x0301)
        self.assertEqual(struct.unpack("!H", hello[3:5])[0], len(hello) - 5)
        self.assertEqual(hello[5], HANDSHAKE_CLIENT_HELLO)
        self.assertEqual(struct.unpack("!H", hello[9:11])[0], 0x0303)

    def test_sslv3_record_version(self):
        self.assertEqual(struct.unpack("!H", build_client_hello(0x0300)[1:3])[0], 0x0300)


class TestParseServerHello(unittest.TestCase):
    def test_version_extracted(self):
        self.assertEqual(parse_server_hello_version(server_hello(0x0302)), 0x0302)

    def test_alert_and_short_data(self):
        self.assertIsNone(parse_server_hello_version(ALERT))
        self.assertIsNone(parse_server_hello_version(b"\x16\x03"))


class TestTLSProtocolProbe(unittest.TestCase):
    """Test scan_port against scripted server replies."""

    @patch("probe.socket.create_connection")
    def test_scan_port_reports_accepted_versions(self, mock_connect):
        replies = {
            0x0300: ALERT,
            0x0301: server_hello(0x0301),
            0x0302: server_hello(0x0302),
            # A server that only speaks 1.1 answers a 1.2 hello with 1.1
            0x0303: server_hello(0x0302),
        }
        order = iter([0x0300, 0x0301, 0x0302, 0x0303])
        mock_connect.side_effect = lambda *args, **kwargs: fake_socket(replies[next(order)])

        accepted = TLSProtocolProbe(timeout=1).scan_port("esx01", 443)

        self.assertEqual(accepted, {"TLSv1.0", "TLSv1.1"})
        self.assertEqual(mock_connect.call_count, 4)
        mock_connect.assert_called_with(("esx01", 443), timeout=1)

    @patch("probe.socket.create_connection")
    def test_connection_reset_counts_as_rejected(self, mock_connect):
        sock = fake_socket(b"")
        sock.sendall.side_effect = ConnectionResetError()
        mock_connect.return_value = sock

        self.assertEqual(TLSProtocolProbe().scan_port("esx01", 5989), set())

    @patch("probe.socket.create_connection")
    def test_refused_port_raises(self, mock_connect):
        mock_connect.side_effect = ConnectionRefusedError()

        with self.assertRaises(ConnectivityError):
            TLSProtocolProbe().scan_port("esx01", 8080)


if __name__ == "__main__":
    unittest.main()
