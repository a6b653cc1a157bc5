"""
Error taxonomy for host reconfiguration.

Everything raised below the host orchestrator derives from
ReconfigurationError so the orchestrator can turn it into a report entry.
"""

from typing import Optional

from models import ProtocolSet, ServiceId


class ReconfigurationError(Exception):
    """Base class for reconfiguration failures."""

    kind = "reconfiguration_error"


class ConnectivityError(ReconfigurationError):
    """Channel could not be opened or a remote command could not run."""

    kind = "connectivity_error"


class VersionUnsupported(ReconfigurationError):
    """Host release/update/build is not a supported baseline."""

    kind = "version_unsupported"


class VersionParseError(VersionUnsupported):
    """Version query output did not contain a release line."""

    kind = "version_unparsable"


class ProtocolScanError(ReconfigurationError):
    """Current protocol state of a service could not be determined."""

    kind = "protocol_scan_error"


class InvalidProtocolCombination(ReconfigurationError):
    """Legacy protocol requested without the full modern set already enabled."""

    kind = "invalid_protocol_combination"

    def __init__(self, service: ServiceId, current: ProtocolSet, required: ProtocolSet):
        self.service = service
        self.current = current
        self.required = required
        super().__init__(
            f"{service.display_name}: cannot enable legacy protocol, "
            f"current {current} is not a superset of {required}"
        )


class ValidationMismatch(ReconfigurationError):
    """Post-change scan does not exactly match the expected protocol set."""

    kind = "validation_mismatch"

    def __init__(
        self, service: ServiceId, expected: ProtocolSet, observed: Optional[ProtocolSet]
    ):
        self.service = service
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"{service.display_name}: expected {expected}, found {observed}"
        )


class BackupFailure(ReconfigurationError):
    """Configuration backup could not be created or verified."""

    kind = "backup_failure"


class ConfigEditFailure(ReconfigurationError):
    """Configuration file edit did not produce the expected content."""

    kind = "config_edit_failure"


class ServiceUnavailable(ReconfigurationError):
    """A host service could not be started or restarted."""

    kind = "service_unavailable"


class RestoreFailure(ReconfigurationError):
    """Rolling a service back to its snapshot failed."""

    kind = "restore_failure"
