"""
Data models for the ESXi fleet security protocol reconfiguration tool.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple


class Protocol(Enum):
    """Transport-security protocol identifiers as ESXi names them."""

    SSLV3 = "sslv3"
    TLS10 = "tlsv1"
    TLS11 = "tlsv1.1"
    TLS12 = "tlsv1.2"


LEGACY_PROTOCOL = Protocol.SSLV3


class HostVariant(Enum):
    """Release family of a host, controls commands and protocol narrowing."""

    BASELINE = "5.5"  # newest supported family
    LEGACY_A = "5.1"
    LEGACY_B = "5.0"
    UNSUPPORTED = "unsupported"

    @property
    def is_legacy(self) -> bool:
        return self in (HostVariant.LEGACY_A, HostVariant.LEGACY_B)


class ServiceId(Enum):
    """Network-facing services whose protocol set is reconfigured."""

    AUTH = (902, "AUTHD")
    EDGE_PROXY = (443, "RHTTPPROXY/HOSTD")
    CIM_BROKER = (5989, "SFCBD")
    STORAGE_VP = (8080, "VSAN_VP")

    @property
    def port(self) -> int:
        return self.value[0]

    @property
    def display_name(self) -> str:
        return self.value[1]


# Order in which services are reconfigured and restored on every host.
SERVICE_ORDER: Tuple[ServiceId, ...] = (
    ServiceId.AUTH,
    ServiceId.EDGE_PROXY,
    ServiceId.CIM_BROKER,
    ServiceId.STORAGE_VP,
)


class ProtocolSet:
    """
    Set of protocols with display order preserved.

    Two sets are equal only with identical size and membership; the order
    protocols were added in only matters for rendering.
    """

    def __init__(self, protocols: Iterable[Protocol] = ()):
        ordered: List[Protocol] = []
        for proto in protocols:
            if proto not in ordered:
                ordered.append(proto)
        self._protocols: Tuple[Protocol, ...] = tuple(ordered)

    @classmethod
    def of(cls, *protocols: Protocol) -> "ProtocolSet":
        return cls(protocols)

    def __iter__(self) -> Iterator[Protocol]:
        return iter(self._protocols)

    def __len__(self) -> int:
        return len(self._protocols)

    def __contains__(self, proto: object) -> bool:
        return proto in self._protocols

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProtocolSet):
            return NotImplemented
        return len(self) == len(other) and all(p in other for p in self)

    def __hash__(self) -> int:
        return hash(frozenset(self._protocols))

    def issuperset(self, other: "ProtocolSet") -> bool:
        return all(p in self for p in other)

    def with_legacy(self) -> "ProtocolSet":
        return ProtocolSet((LEGACY_PROTOCOL,) + self._protocols)

    def without_legacy(self) -> "ProtocolSet":
        return ProtocolSet(p for p in self._protocols if p != LEGACY_PROTOCOL)

    @property
    def has_legacy(self) -> bool:
        return LEGACY_PROTOCOL in self._protocols

    def labels(self) -> List[str]:
        return [p.value for p in self._protocols]

    def __str__(self) -> str:
        return "[" + ", ".join(self.labels()) + "]"

    def __repr__(self) -> str:
        return f"ProtocolSet({self.labels()!r})"


def modern_protocols(variant: HostVariant) -> ProtocolSet:
    """Modern protocol set a host variant supports; legacy families only know TLSv1."""
    if variant.is_legacy:
        return ProtocolSet.of(Protocol.TLS10)
    return ProtocolSet.of(Protocol.TLS10, Protocol.TLS11, Protocol.TLS12)


def requested_protocols(variant: HostVariant, enable_legacy: bool) -> ProtocolSet:
    """Protocol set every service on the host must end up with."""
    modern = modern_protocols(variant)
    return modern.with_legacy() if enable_legacy else modern


def services_for(variant: HostVariant) -> List[ServiceId]:
    """Ordered services considered on a host; vSAN VP does not exist on 5.0/5.1."""
    if variant.is_legacy:
        return [s for s in SERVICE_ORDER if s != ServiceId.STORAGE_VP]
    return list(SERVICE_ORDER)


@dataclass
class HostRef:
    """Reference to a host in the management inventory."""

    name: str  # host name / address as known to the inventory
    host_id: str  # managed object id, e.g. host-42 (ha-host when standalone)
    connected: bool = True


@dataclass
class HostTarget:
    """A host to reconfigure, with the credentials for its command channel."""

    name: str
    username: str
    password: str = field(repr=False)
    ref: Optional[HostRef] = None
    variant: Optional[HostVariant] = None
    is_standalone: bool = False


class HostOutcome(Enum):
    """Overall result of one host's run."""

    FULLY_APPLIED = "fully_applied"
    ROLLED_BACK = "rolled_back"
    SKIPPED_UNSUPPORTED = "skipped_unsupported"
    CONNECTION_FAILED = "connection_failed"
    DRY_RUN = "dry_run"


class RecordStatus(Enum):
    """How a single service ended up."""

    UNCHANGED = "unchanged"
    APPLIED = "applied"
    FAILED = "failed"
    RESTORED = "restored"
    RESTORE_FAILED = "restore_failed"
    DRY_RUN = "dry_run"


RESTORE_FAILED_MARKER = "restore failed, manual check required"


@dataclass
class ReconfigurationRecord:
    """Before/after protocol sets of one service on one host."""

    service: ServiceId
    before: ProtocolSet
    after: Optional[ProtocolSet]
    status: RecordStatus
    error_message: Optional[str] = None

    def after_display(self) -> str:
        if self.status == RecordStatus.RESTORE_FAILED:
            return RESTORE_FAILED_MARKER
        return str(self.after) if self.after is not None else "N/A"


@dataclass
class HostReport:
    """Per-host result handed to the fleet runner once the host is done."""

    host_name: str
    outcome: HostOutcome
    variant: Optional[HostVariant] = None
    records: Dict[ServiceId, ReconfigurationRecord] = field(default_factory=dict)
    failure_kind: Optional[str] = None
    error_message: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def needs_attention(self) -> bool:
        if self.outcome not in (HostOutcome.FULLY_APPLIED, HostOutcome.DRY_RUN):
            return True
        return any(
            r.status == RecordStatus.RESTORE_FAILED for r in self.records.values()
        )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time
