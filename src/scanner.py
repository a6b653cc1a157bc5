"""
Current protocol state of host services, and exact-match validation.
"""

import logging
import shlex
from typing import Dict, Iterable, Optional

from collaborators import CommandChannel, ProtocolProbe
from errors import ProtocolScanError, ValidationMismatch
from models import (
    HostVariant,
    Protocol,
    ProtocolSet,
    ServiceId,
    modern_protocols,
)

logger = logging.getLogger(__name__)

SET_OPTION_COMMAND = "esxcli system settings advanced set -o {option} -s {value}"
LIST_OPTION_COMMAND = "esxcli system settings advanced list -o {option}"

AUTHD_OPTIONS: Dict[HostVariant, str] = {
    HostVariant.BASELINE: "/UserVars/VMAuthdDisabledProtocols",
    HostVariant.LEGACY_A: "/UserVars/VMAuthdDisabledProtocols51",
    HostVariant.LEGACY_B: "/UserVars/VMAuthdDisabledProtocols50",
}

# The probe reports TLS 1.0 as "TLSv1.0"; ESXi calls it "tlsv1".
PROBE_LABELS: Dict[str, Protocol] = {
    "sslv3": Protocol.SSLV3,
    "tlsv1.0": Protocol.TLS10,
    "tlsv1": Protocol.TLS10,
    "tlsv1.1": Protocol.TLS11,
    "tlsv1.2": Protocol.TLS12,
}


def set_option_command(option: str, value: str) -> str:
    return SET_OPTION_COMMAND.format(option=option, value=shlex.quote(value))


def list_option_command(option: str) -> str:
    return LIST_OPTION_COMMAND.format(option=option)


def authd_option(variant: HostVariant) -> str:
    return AUTHD_OPTIONS.get(variant, AUTHD_OPTIONS[HostVariant.BASELINE])


def disabled_protocols_value(requested: ProtocolSet) -> str:
    """Value for a *DisabledProtocols option: nothing when SSLv3 is wanted, else sslv3."""
    return "" if requested.has_legacy else Protocol.SSLV3.value


def normalize_probe_labels(labels: Iterable[str]) -> ProtocolSet:
    """Map probe labels onto protocol identifiers, weakest protocol first."""
    found = set()
    for label in labels:
        proto = PROBE_LABELS.get(label.strip().lower())
        if proto is None:
            logger.debug(f"Ignoring unknown probe label {label!r}")
            continue
        found.add(proto)
    return ProtocolSet(p for p in Protocol if p in found)


def parse_string_value(output: str) -> str:
    """Extract the current value from `esxcli ... advanced list` output."""
    start = output.find("String Value:")
    end = output.find("Default String Value:")
    if start < 0 or end < 0 or end < start:
        raise ProtocolScanError(
            f"Unexpected advanced option output: {output.strip()[:200]!r}"
        )
    return output[start + len("String Value:"):end].strip()


def authd_protocols(disabled_value: str, variant: HostVariant) -> ProtocolSet:
    """
    Infer the AUTHD protocol set from its disabled-protocols option.

    AUTHD only ever disables SSLv3, so the modern set is always assumed on.
    """
    modern = modern_protocols(variant)
    if disabled_value == "":
        return modern.with_legacy()
    if disabled_value == Protocol.SSLV3.value:
        return modern
    raise ProtocolScanError(f"Unrecognised AUTHD disabled protocols value {disabled_value!r}")


def sets_match(expected: ProtocolSet, observed: Optional[ProtocolSet]) -> bool:
    """Exact match: same size and same members. A missing scan never matches."""
    if observed is None:
        return False
    return len(observed) == len(expected) and all(p in expected for p in observed)


def validate_exact(
    service: ServiceId, expected: ProtocolSet, observed: Optional[ProtocolSet]
) -> None:
    """Raise ValidationMismatch unless `observed` is exactly `expected`."""
    if not sets_match(expected, observed):
        logger.error(
            f"{service.display_name}: protocol set after change is {observed}, expected {expected}"
        )
        raise ValidationMismatch(service, expected, observed)
    logger.info(f"{service.display_name}: protocols {observed} verified")


class ProtocolScanner:
    """Reads which protocols a service currently accepts."""

    def __init__(self, probe: ProtocolProbe):
        self.probe = probe

    def scan(
        self,
        service: ServiceId,
        address: str,
        channel: CommandChannel,
        variant: HostVariant,
    ) -> ProtocolSet:
        """
        Scan one service on a host.

        Raises:
            ConnectivityError: Service or host unreachable
            ProtocolScanError: Output could not be interpreted
        """
        if service == ServiceId.AUTH:
            protocols = self._scan_authd(channel, variant)
        else:
            protocols = normalize_probe_labels(self.probe.scan_port(address, service.port))
        logger.debug(f"{address} {service.display_name}({service.port}) -> {protocols}")
        return protocols

    def _scan_authd(self, channel: CommandChannel, variant: HostVariant) -> ProtocolSet:
        result = channel.run_sync(list_option_command(authd_option(variant)))
        if not result.ok:
            raise ProtocolScanError(
                f"Listing {authd_option(variant)} failed: {result.stderr.strip()}"
            )
        return authd_protocols(parse_string_value(result.stdout), variant)
