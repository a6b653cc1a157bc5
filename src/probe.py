"""
Handshake-level protocol probe.

Sends a bare ClientHello for each protocol version and checks whether the
server answers with a ServerHello for that same version. This works for
SSLv3 and TLS 1.0/1.1 even where the local OpenSSL build refuses to
negotiate them.
"""

import logging
import os
import socket
import struct
from typing import Dict, Optional, Set

from collaborators import ProtocolProbe
from errors import ConnectivityError

logger = logging.getLogger(__name__)

# Probe label -> wire version
PROBE_VERSIONS: Dict[str, int] = {
    "SSLv3": 0x0300,
    "TLSv1.0": 0x0301,
    "TLSv1.1": 0x0302,
    "TLSv1.2": 0x0303,
}

CONTENT_HANDSHAKE = 0x16
CONTENT_ALERT = 0x15
HANDSHAKE_CLIENT_HELLO = 0x01
HANDSHAKE_SERVER_HELLO = 0x02

# RSA, DHE and ECDHE suites with AES/3DES/RC4 so old and new stacks both find a match.
CIPHER_SUITES = (
    0xC02F, 0xC030, 0xC013, 0xC014, 0x009C, 0x009D, 0x003C, 0x003D,
    0x002F, 0x0035, 0x0033, 0x0039, 0x000A, 0x0016, 0x0005, 0x0004,
)


def build_client_hello(version: int) -> bytes:
    """Build a TLS record carrying a minimal ClientHello for `version`."""
    ciphers = b"".join(struct.pack("!H", c) for c in CIPHER_SUITES)
    body = (
        struct.pack("!H", version)
        + os.urandom(32)
        + b"\x00"  # empty session id
        + struct.pack("!H", len(ciphers))
        + ciphers
        + b"\x01\x00"  # null compression only
    )
    handshake = struct.pack("!B", HANDSHAKE_CLIENT_HELLO) + struct.pack("!I", len(body))[1:] + body
    # Record layer version stays at SSLv3/TLSv1.0 for maximum compatibility.
    record_version = min(version, 0x0301)
    return struct.pack("!BHH", CONTENT_HANDSHAKE, record_version, len(handshake)) + handshake


def parse_server_hello_version(data: bytes) -> Optional[int]:
    """Return the version in a ServerHello record, None for alerts or garbage."""
    if len(data) < 11 or data[0] != CONTENT_HANDSHAKE:
        return None
    if data[5] != HANDSHAKE_SERVER_HELLO:
        return None
    return struct.unpack("!H", data[9:11])[0]


class TLSProtocolProbe(ProtocolProbe):
    """Probes SSLv3 through TLS 1.2 support of a listening port."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def _recv_exact(self, sock: socket.socket, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = sock.recv(size - len(data))
            if not chunk:
                break
            data += chunk
        return data

    def _accepts(self, address: str, port: int, version: int) -> bool:
        try:
            sock = socket.create_connection((address, port), timeout=self.timeout)
        except OSError as e:
            raise ConnectivityError(f"Cannot connect to {address}:{port}: {e}") from e

        with sock:
            try:
                sock.sendall(build_client_hello(version))
                header = self._recv_exact(sock, 5)
                if len(header) < 5 or header[0] == CONTENT_ALERT:
                    return False
                # version sits in the first 6 bytes of the handshake body
                head = self._recv_exact(sock, 6)
            except OSError as e:
                logger.debug(f"{address}:{port} dropped handshake for 0x{version:04x}: {e}")
                return False
        return parse_server_hello_version(header + head) == version

    def scan_port(self, address: str, port: int) -> Set[str]:
        """
        Probe every known protocol version on a port.

        Raises:
            ConnectivityError: If nothing is listening on the port
        """
        accepted: Set[str] = set()
        for label, version in PROBE_VERSIONS.items():
            if self._accepts(address, port, version):
                accepted.add(label)
        logger.debug(f"Probe {address}:{port} accepted {sorted(accepted)}")
        return accepted
