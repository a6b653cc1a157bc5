"""
Per-host reconfiguration: version gate, ordered service loop, rollback.
"""

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from collaborators import CommandChannel, ProcessState, ServiceManager
from context import HostContext
from errors import (
    ConnectivityError,
    InvalidProtocolCombination,
    ReconfigurationError,
    RestoreFailure,
    VersionUnsupported,
)
from models import (
    SERVICE_ORDER,
    HostOutcome,
    HostReport,
    HostTarget,
    ProtocolSet,
    ReconfigurationRecord,
    RecordStatus,
    ServiceId,
    services_for,
)
from scanner import ProtocolScanner, sets_match
from strategies import STRATEGIES, ServiceStrategy
from version_gate import VersionGate

logger = logging.getLogger(__name__)

SSH_SERVICE_KEY = "TSM-SSH"

ChannelFactory = Callable[[HostTarget], CommandChannel]


class HostState(Enum):
    INIT = "init"
    VERSION_CHECKED = "version_checked"
    SERVICE_LOOP = "service_loop"
    FINALIZING = "finalizing"
    DONE = "done"


class RollbackLedger:
    """Pre-change protocol sets of the services touched on the current host."""

    def __init__(self):
        self._snapshots: Dict[ServiceId, ProtocolSet] = {}

    def record(self, service: ServiceId, snapshot: ProtocolSet) -> None:
        self._snapshots[service] = snapshot

    def discard(self, service: ServiceId) -> None:
        self._snapshots.pop(service, None)

    def get(self, service: ServiceId) -> Optional[ProtocolSet]:
        return self._snapshots.get(service)

    def entries(self) -> List[Tuple[ServiceId, ProtocolSet]]:
        """Snapshots in the fixed service order, not insertion order."""
        return [(s, self._snapshots[s]) for s in SERVICE_ORDER if s in self._snapshots]

    def clear(self) -> None:
        self._snapshots.clear()

    def __contains__(self, service: object) -> bool:
        return service in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)


class HostSession:
    """
    Command channel to one host, plus the SSH service it needs.

    If SSH had to be started through the service manager to open the channel,
    it is stopped again on exit so the host is left as it was found.
    """

    def __init__(
        self,
        target: HostTarget,
        channel_factory: ChannelFactory,
        service_manager: Optional[ServiceManager] = None,
    ):
        self.target = target
        self.channel_factory = channel_factory
        self.service_manager = service_manager
        self.channel: Optional[CommandChannel] = None
        self.started_ssh = False

    def __enter__(self) -> CommandChannel:
        self._ensure_ssh()
        try:
            self.channel = self.channel_factory(self.target)
        except ReconfigurationError:
            self._restore_ssh()
            raise
        return self.channel

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.channel is not None:
            try:
                self.channel.close()
            except Exception as e:
                logger.warning(f"Error closing channel to {self.target.name}: {e}")
            self.channel = None
        self._restore_ssh()
        return False

    def _ensure_ssh(self) -> None:
        if self.service_manager is None or self.target.ref is None:
            return
        state = self.service_manager.get_service_state(self.target.ref, SSH_SERVICE_KEY)
        if state == ProcessState.RUNNING:
            logger.debug(f"SSH already running on {self.target.name}")
            return
        logger.info(f"Enabling SSH on {self.target.name} for the duration of the run")
        try:
            self.service_manager.start_service(self.target.ref, SSH_SERVICE_KEY)
        except ReconfigurationError as e:
            raise ConnectivityError(f"Could not enable SSH on {self.target.name}: {e}") from e
        self.started_ssh = True

    def _restore_ssh(self) -> None:
        if not self.started_ssh:
            return
        logger.info(f"Disabling SSH on {self.target.name} again")
        try:
            self.service_manager.stop_service(self.target.ref, SSH_SERVICE_KEY)
        except ReconfigurationError as e:
            logger.error(
                f"Could not disable SSH on {self.target.name}, please stop it manually: {e}"
            )
        self.started_ssh = False


class HostOrchestrator:
    """Drives one host from version check through reconfiguration or rollback."""

    def __init__(
        self,
        target: HostTarget,
        enable_legacy: bool,
        channel_factory: ChannelFactory,
        scanner: ProtocolScanner,
        version_gate: VersionGate,
        service_manager: Optional[ServiceManager] = None,
        dry_run: bool = False,
        service_wait_timeout: float = 300,
        strategies: Optional[Dict[ServiceId, ServiceStrategy]] = None,
    ):
        self.target = target
        self.enable_legacy = enable_legacy
        self.channel_factory = channel_factory
        self.scanner = scanner
        self.version_gate = version_gate
        self.service_manager = service_manager
        self.dry_run = dry_run
        self.service_wait_timeout = service_wait_timeout
        self.strategies = strategies or STRATEGIES

        self.state = HostState.INIT
        self.ledger = RollbackLedger()

    def run(self) -> HostReport:
        """
        Process the host to completion. Never raises for host-level failures;
        every outcome ends up in the returned report.
        """
        report = HostReport(
            host_name=self.target.name,
            outcome=HostOutcome.CONNECTION_FAILED,
            start_time=time.time(),
        )
        self.state = HostState.INIT
        self.ledger.clear()
        logger.info("-" * 70)
        logger.info(f"Processing host {self.target.name}")

        session = HostSession(self.target, self.channel_factory, self.service_manager)
        try:
            with session as channel:
                self._run_host(channel, report)
        except ReconfigurationError as e:
            logger.error(f"Could not connect to host {self.target.name}: {e}")
            self._mark_failed(report, HostOutcome.CONNECTION_FAILED, e)
        finally:
            self.state = HostState.FINALIZING
            self.ledger.clear()
            report.end_time = time.time()
            self.state = HostState.DONE

        logger.info(f"Host {self.target.name} finished: {report.outcome.value}")
        return report

    def _mark_failed(self, report: HostReport, outcome: HostOutcome, error: Exception) -> None:
        report.outcome = outcome
        report.failure_kind = getattr(error, "kind", type(error).__name__)
        report.error_message = str(error)

    def _run_host(self, channel: CommandChannel, report: HostReport) -> None:
        try:
            variant = self.version_gate.resolve(channel, self.target.name)
        except VersionUnsupported as e:
            self._mark_failed(report, HostOutcome.SKIPPED_UNSUPPORTED, e)
            return
        except ConnectivityError as e:
            logger.error(f"Version check on {self.target.name} failed: {e}")
            self._mark_failed(report, HostOutcome.CONNECTION_FAILED, e)
            return

        self.state = HostState.VERSION_CHECKED
        self.target.variant = variant
        report.variant = variant
        ctx = HostContext(
            target=self.target,
            variant=variant,
            channel=channel,
            scanner=self.scanner,
            enable_legacy=self.enable_legacy,
            service_wait_timeout=self.service_wait_timeout,
        )
        logger.info(f"Requested protocols for {self.target.name}: {ctx.requested}")

        self.state = HostState.SERVICE_LOOP
        for service in services_for(variant):
            try:
                self._process_service(ctx, service, report)
            except Exception as e:
                if isinstance(e, ReconfigurationError):
                    logger.error(f"{service.display_name} on {self.target.name} failed: {e}")
                else:
                    logger.exception(
                        f"Unexpected error configuring {service.display_name} on {self.target.name}"
                    )
                self._mark_failed(report, HostOutcome.ROLLED_BACK, e)
                before = self.ledger.get(service)
                if before is None:
                    before = getattr(e, "current", None) or ProtocolSet()
                report.records[service] = ReconfigurationRecord(
                    service=service,
                    before=before,
                    after=None,
                    status=RecordStatus.FAILED,
                    error_message=str(e),
                )
                self._rollback(ctx, report, failed=service)
                return

        report.outcome = HostOutcome.DRY_RUN if self.dry_run else HostOutcome.FULLY_APPLIED

    def _process_service(self, ctx: HostContext, service: ServiceId, report: HostReport) -> None:
        strategy = self.strategies[service]
        name = service.display_name
        logger.info(f"Configuring {name} ({service.port}) on {ctx.address}")

        if self.dry_run:
            logger.debug(f"DRY RUN: not preparing {name}")
        else:
            strategy.prepare(ctx)

        before = strategy.scan(ctx)
        self.ledger.record(service, before)
        logger.info(f"{name}: protocols currently enabled {before}")

        if not self.enable_legacy and not before.has_legacy:
            logger.info(f"{name}: legacy protocol already disabled")
            self.ledger.discard(service)
            self._record(report, service, before, before, RecordStatus.UNCHANGED)
            return

        if self.enable_legacy and not before.issuperset(ctx.modern):
            # Service untouched; keep it out of the rollback.
            self.ledger.discard(service)
            raise InvalidProtocolCombination(service, before, ctx.modern)

        requested = ctx.requested
        if sets_match(requested, before):
            logger.info(f"{name}: requested protocols {requested} already enabled")
            self._record(report, service, before, before, RecordStatus.UNCHANGED)
            return

        if self.dry_run:
            logger.info(f"DRY RUN: would change {name} from {before} to {requested}")
            self._record(report, service, before, requested, RecordStatus.DRY_RUN)
            return

        after = strategy.apply(ctx, requested)
        logger.info(f"{name}: successfully changed {before} -> {after}")
        self._record(report, service, before, after, RecordStatus.APPLIED)

    def _record(
        self,
        report: HostReport,
        service: ServiceId,
        before: ProtocolSet,
        after: Optional[ProtocolSet],
        status: RecordStatus,
    ) -> None:
        report.records[service] = ReconfigurationRecord(
            service=service, before=before, after=after, status=status
        )

    def _rollback(self, ctx: HostContext, report: HostReport, failed: ServiceId) -> None:
        """Restore every service in the ledger to its snapshot, in fixed order."""
        entries = self.ledger.entries()
        if not entries:
            return
        logger.warning(
            f"Reverting {len(entries)} service(s) on {ctx.address} to their previous protocols"
        )
        for service, snapshot in entries:
            record = report.records[service]
            if self.dry_run:
                logger.info(f"DRY RUN: would restore {service.display_name} to {snapshot}")
                continue
            try:
                record.after = self.strategies[service].restore(ctx, snapshot)
                if service != failed:
                    record.status = RecordStatus.RESTORED
            except Exception as e:
                if not isinstance(e, RestoreFailure):
                    logger.exception(f"Unexpected error restoring {service.display_name}")
                logger.error(
                    f"{service.display_name} on {ctx.address}: restore failed, manual check required: {e}"
                )
                record.after = None
                record.status = RecordStatus.RESTORE_FAILED
                record.error_message = record.error_message or str(e)
