"""
Contracts for the external systems the reconfiguration core talks to.

Concrete adapters live in clients.py (inventory), ssh_channel.py (command
channel), probe.py (protocol probe) and service_manager.py (host services).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set

from models import HostRef


class ProcessState(Enum):
    """State of a host process or host service."""

    RUNNING = "running"
    STOPPED = "stopped"


def process_state_from_status(output: str) -> ProcessState:
    """Interpret the output of an ESXi init script `status` call."""
    text = output.strip().lower()
    if "is running" in text and "not running" not in text:
        return ProcessState.RUNNING
    return ProcessState.STOPPED


@dataclass
class CommandResult:
    """Output of a remote command."""

    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class InventoryClient(ABC):
    """Central management endpoint that knows which hosts exist."""

    @abstractmethod
    def login(self) -> None:
        """Authenticate and keep the session for later calls."""

    @abstractmethod
    def list_connected_hosts(self) -> List[HostRef]:
        """Return every host currently connected to the endpoint."""

    @abstractmethod
    def resolve_host(self, name: str) -> Optional[HostRef]:
        """Look a host up by name; None when it is not in the inventory."""


class CommandChannel(ABC):
    """Remote shell on a single host."""

    @abstractmethod
    def run_sync(self, command: str) -> CommandResult:
        """Run a command and wait for it; raises ConnectivityError if it cannot run."""

    @abstractmethod
    def run_async(self, command: str) -> None:
        """Start a command without waiting for it to finish."""

    @abstractmethod
    def wait_until_process_state(
        self, service_script: str, state: ProcessState, timeout: float
    ) -> bool:
        """Poll an init script until the process reaches `state`."""

    @abstractmethod
    def copy_file(self, src: str, dst: str) -> bool:
        """Copy a file on the host."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check a regular file exists on the host."""

    @abstractmethod
    def close(self) -> None:
        """Release the channel."""


class ProtocolProbe(ABC):
    """Reports which protocol versions a TLS endpoint accepts."""

    @abstractmethod
    def scan_port(self, address: str, port: int) -> Set[str]:
        """Return probe labels such as 'TLSv1.0' for every accepted version."""


class ServiceManager(ABC):
    """Privileged management of host services (separate from the command channel)."""

    @abstractmethod
    def get_service_state(self, host: HostRef, service_key: str) -> ProcessState:
        pass

    @abstractmethod
    def start_service(self, host: HostRef, service_key: str) -> None:
        pass

    @abstractmethod
    def stop_service(self, host: HostRef, service_key: str) -> None:
        pass
