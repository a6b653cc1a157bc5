"""
Fleet runner for ESXi security protocol reconfiguration.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from collaborators import InventoryClient, ServiceManager
from errors import ConnectivityError
from models import HostOutcome, HostReport, HostTarget, RecordStatus
from orchestrator import ChannelFactory, HostOrchestrator
from scanner import ProtocolScanner
from version_gate import VersionGate

logger = logging.getLogger(__name__)


class FleetRunner:
    """Processes hosts one at a time and aggregates their reports."""

    def __init__(
        self,
        enable_legacy: bool,
        channel_factory: ChannelFactory,
        scanner: ProtocolScanner,
        version_gate: VersionGate,
        inventory: Optional[InventoryClient] = None,
        service_manager: Optional[ServiceManager] = None,
        dry_run: bool = False,
        service_wait_timeout: float = 300,
        orchestrator_factory: Optional[Callable[..., HostOrchestrator]] = None,
    ):
        """
        Initialize the fleet runner.

        Args:
            enable_legacy: True to enable SSLv3, False to disable it
            channel_factory: Opens a command channel for a host
            scanner: Protocol scanner shared by all hosts (stateless)
            version_gate: Host version classifier
            inventory: Optional inventory used to check hosts exist and are connected
            service_manager: Optional service manager used to enable SSH
            dry_run: If True, only scan and report what would change
            service_wait_timeout: Seconds to wait for a restarted host service
            orchestrator_factory: Builds the per-host orchestrator (tests)
        """
        self.enable_legacy = enable_legacy
        self.channel_factory = channel_factory
        self.scanner = scanner
        self.version_gate = version_gate
        self.inventory = inventory
        self.service_manager = service_manager
        self.dry_run = dry_run
        self.service_wait_timeout = service_wait_timeout
        self.orchestrator_factory = orchestrator_factory or HostOrchestrator

        self.stats = {
            "total": 0,
            "fully_applied": 0,
            "rolled_back": 0,
            "skipped_unsupported": 0,
            "connection_failed": 0,
            "dry_run": 0,
            "restore_failed": 0,
        }

        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None
        self.results: Dict[str, HostReport] = {}
        self._stop_requested = False

    def request_stop(self) -> None:
        """Finish the current host, then stop before starting the next one."""
        if not self._stop_requested:
            logger.warning("Stop requested; finishing the current host before stopping")
        self._stop_requested = True

    def _resolve(self, target: HostTarget) -> Optional[str]:
        """Attach the inventory reference; return a reason when the host must be skipped."""
        if self.inventory is None or target.ref is not None:
            return None
        try:
            ref = self.inventory.resolve_host(target.name)
        except ConnectivityError as e:
            return f"Inventory lookup failed: {e}"
        if ref is None:
            return "Host not found in inventory"
        if not ref.connected:
            return "Host is not connected"
        target.ref = ref
        return None

    def _process(self, target: HostTarget) -> HostReport:
        reason = self._resolve(target)
        if reason:
            logger.error(f"Skipping {target.name}: {reason}")
            return HostReport(
                host_name=target.name,
                outcome=HostOutcome.CONNECTION_FAILED,
                failure_kind="host_not_available",
                error_message=reason,
            )

        orchestrator = self.orchestrator_factory(
            target=target,
            enable_legacy=self.enable_legacy,
            channel_factory=self.channel_factory,
            scanner=self.scanner,
            version_gate=self.version_gate,
            service_manager=self.service_manager,
            dry_run=self.dry_run,
            service_wait_timeout=self.service_wait_timeout,
        )
        return orchestrator.run()

    def run(self, hosts: List[HostTarget]) -> Dict[str, HostReport]:
        """
        Reconfigure every host in order.

        Args:
            hosts: Targets, processed strictly in sequence

        Returns:
            Mapping of host name to its report
        """
        self.run_start_time = time.time()

        action = "ENABLE" if self.enable_legacy else "DISABLE"
        logger.info("=" * 70)
        logger.info(f"ESXi SSLv3 Protocol Reconfiguration ({action})")
        logger.info("=" * 70)
        logger.info(f"Hosts: {', '.join(h.name for h in hosts)}")
        logger.info(f"Dry run: {self.dry_run}")
        logger.info(f"Version check bypassed: {self.version_gate.bypass}")
        logger.info(f"Service wait timeout: {self.service_wait_timeout}s")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        for target in hosts:
            if self._stop_requested:
                logger.warning(f"Not starting {target.name}: run was stopped")
                break

            self.stats["total"] += 1
            try:
                report = self._process(target)
            except Exception as e:
                logger.exception(f"Unexpected error processing {target.name}")
                report = HostReport(
                    host_name=target.name,
                    outcome=HostOutcome.CONNECTION_FAILED,
                    failure_kind=type(e).__name__,
                    error_message=str(e),
                )

            self.results[target.name] = report
            self.stats[report.outcome.value] += 1
            if any(
                r.status == RecordStatus.RESTORE_FAILED for r in report.records.values()
            ):
                self.stats["restore_failed"] += 1

        self.run_end_time = time.time()
        self._print_report()
        return self.results

    @property
    def needs_attention(self) -> List[str]:
        return [name for name, r in self.results.items() if r.needs_attention]

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"

    def _print_report(self):
        """Log per-host results and run statistics."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("")
        logger.info("=" * 70)
        logger.info("RECONFIGURATION REPORT")
        logger.info("=" * 70)

        logger.info("")
        logger.info("STATISTICS")
        logger.info("-" * 40)
        for k, v in self.stats.items():
            logger.info(f"{k:20s}: {v}")
        logger.info(f"{'duration':20s}: {self._format_duration(total_duration)}")

        for name, report in self.results.items():
            variant = report.variant.value if report.variant else "N/A"
            logger.info("")
            logger.info(f"{name} [{report.outcome.value}] (variant: {variant})")
            logger.info("-" * 70)
            if report.error_message:
                logger.info(f"  Error ({report.failure_kind}): {report.error_message}")
            if not report.records:
                continue
            logger.info(f"  {'Service':<22} {'Port':<6} {'Before':<36} {'After'}")
            for record in report.records.values():
                logger.info(
                    f"  {record.service.display_name:<22} {record.service.port:<6} "
                    f"{str(record.before):<36} {record.after_display()}"
                )

        attention = self.needs_attention
        if attention:
            logger.info("")
            logger.warning(f"Hosts needing manual attention: {', '.join(attention)}")

        logger.info("")
        logger.info("=" * 70)
