"""Console entry point for the ESXi SSLv3 reconfiguration CLI."""

from __future__ import annotations

import argparse
import logging
import signal
from typing import List

from clients import VSphereRestClient
from collaborators import InventoryClient
from config import ReconfigConfig
from errors import ConnectivityError
from fleet import FleetRunner
from log_utils import setup_logging
from models import HostRef, HostTarget
from probe import TLSProtocolProbe
from scanner import ProtocolScanner
from service_manager import VSphereServiceManager
from ssh_channel import SSHCommandChannel
from version_gate import VersionGate

logger = logging.getLogger(__name__)

STANDALONE_HOST_ID = "ha-host"


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Enable or disable SSLv3 on ESXi 5.x host services "
            "(vmauthd, rhttpproxy/hostd, sfcbd, vsanvpd), rolling back every "
            "service on a host if any one of them fails."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Preview disabling SSLv3 on two hosts managed by vCenter\n"
            "  tls-reconfig --endpoint vc01 --username administrator@vsphere.local \\\n"
            "      --hosts esx01 esx02 --host-username root --disable-legacy --dry-run\n\n"
            "  # Enable SSLv3 on every connected host\n"
            "  tls-reconfig --endpoint vc01 --username administrator@vsphere.local \\\n"
            "      --all-connected --host-username root --enable-legacy\n\n"
            "  # Standalone host: point --endpoint at the ESXi host itself\n"
            "  tls-reconfig --endpoint esx01 --username root --host-username root --disable-legacy\n\n"
            "Passwords default to the VSPHERE_PASSWORD and ESXI_PASSWORD environment variables."
        ),
    )

    endpoint = parser.add_argument_group("management endpoint")
    endpoint.add_argument(
        "--endpoint",
        required=True,
        metavar="HOST",
        help="vCenter Server, or the ESXi host itself for a standalone host",
    )
    endpoint.add_argument("--username", required=True, help="Endpoint user name")
    endpoint.add_argument(
        "--password", help="Endpoint password (default: $VSPHERE_PASSWORD)"
    )
    endpoint.add_argument(
        "--verify-ssl",
        action="store_true",
        help="Verify the endpoint certificate (self-signed certificates fail)",
    )

    hosts = parser.add_argument_group("target hosts")
    targets = hosts.add_mutually_exclusive_group()
    targets.add_argument(
        "--hosts", nargs="+", metavar="HOST", help="ESXi hosts to reconfigure"
    )
    targets.add_argument(
        "--all-connected",
        action="store_true",
        help="Reconfigure every host connected to the vCenter Server",
    )
    hosts.add_argument(
        "--host-username", required=True, help="SSH user name on the ESXi hosts"
    )
    hosts.add_argument(
        "--host-password", help="SSH password on the ESXi hosts (default: $ESXI_PASSWORD)"
    )
    hosts.add_argument("--ssh-port", type=int, default=22)

    action = parser.add_argument_group("action")
    mode = action.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--enable-legacy",
        dest="enable_legacy",
        action="store_true",
        help="Enable SSLv3 alongside the TLS protocols",
    )
    mode.add_argument(
        "--disable-legacy",
        dest="enable_legacy",
        action="store_false",
        help="Disable SSLv3, leaving only TLS protocols",
    )
    action.add_argument(
        "--bypass-version-check",
        action="store_true",
        help="Continue on hosts whose build is not known to support protocol configuration",
    )
    action.add_argument(
        "--dry-run",
        action="store_true",
        help="Scan and report what would change without changing anything",
    )
    action.add_argument(
        "--yes", action="store_true", help="Do not ask for confirmation"
    )

    timeouts = parser.add_argument_group("timeouts")
    timeouts.add_argument("--command-timeout", type=int, default=120, metavar="SECONDS")
    timeouts.add_argument(
        "--service-wait-timeout",
        type=int,
        default=300,
        metavar="SECONDS",
        help="Maximum time to wait for a restarted host service (default: 300)",
    )
    timeouts.add_argument("--probe-timeout", type=float, default=10.0, metavar="SECONDS")

    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    return parser


def confirm(message: str, assume_yes: bool) -> bool:
    """Ask the operator to confirm; always yes with --yes."""
    if assume_yes:
        return True
    answer = input(f"{message} Continue? [y/N]: ")
    return answer.strip().lower() in ("y", "yes")


def confirm_run(config: ReconfigConfig) -> bool:
    if not config.enable_legacy and not config.dry_run:
        logger.warning(
            "Disabling SSLv3 breaks any client or solution that still connects with it"
        )
        if not confirm("SSLv3 will be disabled on the selected hosts.", config.assume_yes):
            return False
    if config.bypass_version_check:
        logger.warning(
            "Version check bypassed: unsupported builds may not honour the protocol settings"
        )
        if not confirm("Hosts will be reconfigured regardless of build.", config.assume_yes):
            return False
    return True


def connect_inventory(
    config: ReconfigConfig, service_manager: VSphereServiceManager
) -> InventoryClient:
    """
    Log into the vCenter REST inventory, or use the SOAP session when the
    endpoint has no REST API (vCenter 6.0 and older).
    """
    rest = VSphereRestClient(
        config.endpoint,
        config.username,
        config.password,
        verify_ssl=config.verify_ssl,
    )
    try:
        rest.login()
    except ConnectivityError as e:
        logger.warning(
            f"vSphere REST API unavailable on {config.endpoint} ({e}); "
            "using the SOAP inventory"
        )
        service_manager.login()
        return service_manager
    return rest


def build_targets(
    config: ReconfigConfig,
    inventory: InventoryClient | None,
) -> List[HostTarget]:
    """Turn the endpoint and host selection into the ordered target list."""
    if inventory is None:
        ref = HostRef(name=config.endpoint, host_id=STANDALONE_HOST_ID)
        return [
            HostTarget(
                name=config.endpoint,
                username=config.host_username,
                password=config.host_password,
                ref=ref,
                is_standalone=True,
            )
        ]

    if config.all_connected:
        refs = inventory.list_connected_hosts()
        return [
            HostTarget(
                name=ref.name,
                username=config.host_username,
                password=config.host_password,
                ref=ref,
            )
            for ref in refs
        ]

    return [
        HostTarget(name=name, username=config.host_username, password=config.host_password)
        for name in config.hosts
    ]


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file="tls-reconfig.log")

    try:
        config = ReconfigConfig.from_args(args)
    except ValueError as e:
        parser.error(str(e))

    if not confirm_run(config):
        logger.info("Aborted by user")
        return 1

    service_manager = VSphereServiceManager(
        config.endpoint, config.username, config.password, verify_ssl=config.verify_ssl
    )
    inventory = None
    try:
        service_manager.connect()
        if service_manager.is_standalone_host:
            logger.info(f"{config.endpoint} is a standalone ESXi host")
            if config.hosts or config.all_connected:
                logger.warning("Ignoring host selection: the endpoint is the only target")
        else:
            if not config.hosts and not config.all_connected:
                parser.error("--hosts or --all-connected is required with a vCenter Server")
            inventory = connect_inventory(config, service_manager)

        targets = build_targets(config, inventory)
        if not targets:
            logger.error("No hosts to reconfigure")
            return 1

        def open_channel(target: HostTarget) -> SSHCommandChannel:
            return SSHCommandChannel.open(
                target.name,
                target.username,
                target.password,
                port=config.ssh_port,
                command_timeout=config.command_timeout,
            )

        runner = FleetRunner(
            enable_legacy=config.enable_legacy,
            channel_factory=open_channel,
            scanner=ProtocolScanner(TLSProtocolProbe(timeout=config.probe_timeout)),
            version_gate=VersionGate(bypass=config.bypass_version_check),
            inventory=inventory,
            service_manager=service_manager,
            dry_run=config.dry_run,
            service_wait_timeout=config.service_wait_timeout,
        )
        signal.signal(signal.SIGINT, lambda signum, frame: runner.request_stop())

        runner.run(targets)
        return 1 if runner.needs_attention else 0
    except ConnectivityError as e:
        logger.error(f"Could not connect to {config.endpoint}: {e}")
        return 1
    finally:
        if inventory is not None and inventory is not service_manager:
            inventory.logout()
        service_manager.close()
