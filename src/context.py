"""
Per-host state passed to every service strategy.
"""

from dataclasses import dataclass

from collaborators import CommandChannel
from models import (
    HostTarget,
    HostVariant,
    ProtocolSet,
    ServiceId,
    modern_protocols,
    requested_protocols,
)
from scanner import ProtocolScanner


@dataclass
class HostContext:
    """Everything a strategy needs to act on the host currently being processed."""

    target: HostTarget
    variant: HostVariant
    channel: CommandChannel
    scanner: ProtocolScanner
    enable_legacy: bool
    service_wait_timeout: float = 300

    @property
    def address(self) -> str:
        return self.target.name

    @property
    def modern(self) -> ProtocolSet:
        return modern_protocols(self.variant)

    @property
    def requested(self) -> ProtocolSet:
        return requested_protocols(self.variant, self.enable_legacy)

    def scan(self, service: ServiceId) -> ProtocolSet:
        return self.scanner.scan(service, self.address, self.channel, self.variant)
