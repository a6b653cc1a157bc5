"""
Per-service reconfiguration strategies.

Each strategy knows how to scan, apply and restore the protocol set of one
host service. apply() and restore() both finish by re-scanning the service and
requiring an exact match with the target set; there is a single
restart/reapply per call and no retry loop.
"""

import logging
import shlex
from typing import Dict, Optional

from collaborators import ProcessState, process_state_from_status
from context import HostContext
from errors import (
    BackupFailure,
    ConfigEditFailure,
    ReconfigurationError,
    RestoreFailure,
    ServiceUnavailable,
)
from models import HostVariant, ProtocolSet, ServiceId
from scanner import (
    authd_option,
    disabled_protocols_value,
    set_option_command,
    sets_match,
    validate_exact,
)

logger = logging.getLogger(__name__)

RHTTPPROXY_SCRIPT = "/etc/init.d/rhttpproxy"
HOSTD_SCRIPT = "/etc/init.d/hostd"
SFCBD_SCRIPT = "/etc/init.d/sfcbd-watchdog"
VSANVP_SCRIPT = "/etc/init.d/vsanvpd"

RHTTPPROXY_CONFIG = "/etc/vmware/rhttpproxy/config.xml"
SFCB_CONFIG = "/etc/sfcb/sfcb.cfg"
BACKUP_SUFFIX = ".bkup"

SSL_OPTIONS_VALUE = "16924672"
SSL_OPTIONS_ENTRY = f"<sslOptions>{SSL_OPTIONS_VALUE}</sslOptions>"

SFCB_SSLV3_KEY = "enableSSLv3"

RHTTPPROXY_OPTION_51 = "/UserVars/ESXiRhttpproxyDisabledProtocols51"
HOSTD_OPTION_50 = "/UserVars/ESXiHostdDisabledProtocols"
VSANVP_OPTION = "/UserVars/ESXiVPsDisabledProtocols"


def backup_path(path: str) -> str:
    return path + BACKUP_SUFFIX


def add_ssl_options_command(path: str) -> str:
    """Insert the sslOptions entry before </ssl> inside the <vmacore> block."""
    tmp = f"{path}-TEMP"
    awk = (
        "awk -F'[<>]' '/<vmacore>/ {f=1} /^<mm>/ && !/<vmacore>/ {f=0} "
        "f && /<\\/ssl>/ {q=1} f && q "
        f'{{print "          {SSL_OPTIONS_ENTRY}"; f=q=0}}1\''
    )
    return f"{awk} {path} > {tmp} && mv {tmp} {path}"


def delete_ssl_options_command(path: str) -> str:
    return f"sed -i -e '/<sslOptions>{SSL_OPTIONS_VALUE}<\\/sslOptions>/d' {path}"


def sfcb_set_command(path: str, enabled: bool) -> str:
    value = "true" if enabled else "false"
    return f"sed -i -e 's/^{SFCB_SSLV3_KEY}:.*$/{SFCB_SSLV3_KEY}:{value}/' {path}"


def sfcb_append_command(path: str, enabled: bool) -> str:
    value = "true" if enabled else "false"
    return f"echo {SFCB_SSLV3_KEY}:{value} >> {path}"


class ServiceStrategy:
    """Base strategy: scan through the scanner, validate by exact match."""

    service: ServiceId

    def prepare(self, ctx: HostContext) -> None:
        """Make sure the service can be reconfigured at all."""

    def scan(self, ctx: HostContext) -> ProtocolSet:
        return ctx.scan(self.service)

    def apply(self, ctx: HostContext, requested: ProtocolSet) -> ProtocolSet:
        """
        Reconfigure the service to `requested` and return the verified set.

        Raises:
            ReconfigurationError: Any failure; ValidationMismatch when the
                post-change scan is not exactly `requested`
        """
        logger.info(
            f"{self.service.display_name}: configuring {requested} on {ctx.address}"
        )
        self._configure(ctx, requested)
        observed = self.scan(ctx)
        validate_exact(self.service, requested, observed)
        return observed

    def restore(self, ctx: HostContext, snapshot: ProtocolSet) -> ProtocolSet:
        """
        Bring the service back to the protocol set it had before this run.

        Raises:
            RestoreFailure: If the service could not be restored and verified
        """
        logger.info(
            f"**** Reverting changes made on: {self.service.display_name} ({self.service.port}) ****"
        )
        try:
            current = self.scan(ctx)
            if sets_match(snapshot, current):
                logger.info(
                    f"{self.service.display_name}: already at {snapshot}, nothing to revert"
                )
                return current
            self._revert(ctx, snapshot)
            observed = self.scan(ctx)
            validate_exact(self.service, snapshot, observed)
        except ReconfigurationError as e:
            raise RestoreFailure(
                f"Could not restore {self.service.display_name} to {snapshot}: {e}"
            ) from e
        logger.info(f"{self.service.display_name}: restored to {observed}")
        return observed

    def _configure(self, ctx: HostContext, target: ProtocolSet) -> None:
        raise NotImplementedError

    def _revert(self, ctx: HostContext, snapshot: ProtocolSet) -> None:
        self._configure(ctx, snapshot)

    # Helpers shared by the concrete strategies

    def _run(self, ctx: HostContext, command: str) -> str:
        result = ctx.channel.run_sync(command)
        if not result.ok:
            raise ConfigEditFailure(
                f"{self.service.display_name}: command failed "
                f"(exit {result.exit_status}): {command}: {result.stderr.strip()}"
            )
        return result.stdout

    def _restart(self, ctx: HostContext, script: str) -> None:
        logger.info(f"Restarting {script} for the change to take effect")
        ctx.channel.run_sync(f"{script} restart")
        if not ctx.channel.wait_until_process_state(
            script, ProcessState.RUNNING, ctx.service_wait_timeout
        ):
            raise ServiceUnavailable(f"{script} did not come back after restart")

    def _stop_start(self, ctx: HostContext, script: str) -> None:
        # hostd on 5.0 is stopped and started asynchronously rather than restarted.
        logger.info(f"Stopping and starting {script} for the change to take effect")
        ctx.channel.run_async(f"{script} stop")
        if not ctx.channel.wait_until_process_state(
            script, ProcessState.STOPPED, ctx.service_wait_timeout
        ):
            raise ServiceUnavailable(f"{script} did not stop")
        ctx.channel.run_async(f"{script} start")
        if not ctx.channel.wait_until_process_state(
            script, ProcessState.RUNNING, ctx.service_wait_timeout
        ):
            raise ServiceUnavailable(f"{script} did not start")

    def _backup(self, ctx: HostContext, path: str) -> None:
        backup = backup_path(path)
        logger.info(f"Backing up {path} to {backup}")
        if not ctx.channel.copy_file(path, backup):
            raise BackupFailure(f"Could not take backup of {path}")
        if not ctx.channel.file_exists(backup):
            raise BackupFailure(f"Could not find backed up file {backup}")

    def _replay_backup(self, ctx: HostContext, path: str) -> bool:
        backup = backup_path(path)
        if not ctx.channel.file_exists(backup):
            logger.warning(f"No backup {backup} to restore from")
            return False
        logger.info(f"Restoring {path} from {backup}")
        if not ctx.channel.copy_file(backup, path):
            raise ConfigEditFailure(f"Could not copy {backup} back to {path}")
        return True

    def _entry_present(self, ctx: HostContext, path: str, pattern: str) -> bool:
        result = ctx.channel.run_sync(f"grep {shlex.quote(pattern)} {path}")
        return result.ok and bool(result.stdout.strip())


class AuthServiceStrategy(ServiceStrategy):
    """vmauthd (902): one advanced option, picked up without a restart."""

    service = ServiceId.AUTH

    def _configure(self, ctx: HostContext, target: ProtocolSet) -> None:
        option = authd_option(ctx.variant)
        self._run(ctx, set_option_command(option, disabled_protocols_value(target)))


class EdgeProxyStrategy(ServiceStrategy):
    """
    rhttpproxy/hostd (443).

    5.5 hosts get an sslOptions entry in the rhttpproxy config, backed up
    first and replayed on restore. 5.1 hosts use an advanced option and a
    restart of rhttpproxy; 5.0 hosts use an advanced option and a stop/start
    of hostd.
    """

    service = ServiceId.EDGE_PROXY

    def _configure(self, ctx: HostContext, target: ProtocolSet) -> None:
        if ctx.variant == HostVariant.LEGACY_B:
            self._run(ctx, set_option_command(HOSTD_OPTION_50, disabled_protocols_value(target)))
            self._stop_start(ctx, HOSTD_SCRIPT)
        elif ctx.variant == HostVariant.LEGACY_A:
            self._run(ctx, set_option_command(RHTTPPROXY_OPTION_51, disabled_protocols_value(target)))
            self._restart(ctx, RHTTPPROXY_SCRIPT)
        else:
            self._backup(ctx, RHTTPPROXY_CONFIG)
            self._edit_config(ctx, target.has_legacy)
            self._restart(ctx, RHTTPPROXY_SCRIPT)

    def _revert(self, ctx: HostContext, snapshot: ProtocolSet) -> None:
        if ctx.variant.is_legacy:
            self._configure(ctx, snapshot)
            return
        if not self._replay_backup(ctx, RHTTPPROXY_CONFIG):
            self._edit_config(ctx, snapshot.has_legacy)
        self._restart(ctx, RHTTPPROXY_SCRIPT)

    def _edit_config(self, ctx: HostContext, enable_legacy: bool) -> None:
        present = self._entry_present(ctx, RHTTPPROXY_CONFIG, SSL_OPTIONS_ENTRY)
        if enable_legacy:
            if present:
                logger.info(f"{SSL_OPTIONS_ENTRY} already in {RHTTPPROXY_CONFIG}")
                return
            logger.info(f"Adding {SSL_OPTIONS_ENTRY} to {RHTTPPROXY_CONFIG}")
            self._run(ctx, add_ssl_options_command(RHTTPPROXY_CONFIG))
        elif present:
            logger.info(f"Deleting {SSL_OPTIONS_ENTRY} from {RHTTPPROXY_CONFIG}")
            self._run(ctx, delete_ssl_options_command(RHTTPPROXY_CONFIG))

        if self._entry_present(ctx, RHTTPPROXY_CONFIG, SSL_OPTIONS_ENTRY) != enable_legacy:
            raise ConfigEditFailure(
                f"Unable to update sslOptions entry in {RHTTPPROXY_CONFIG}"
            )


class CimBrokerStrategy(ServiceStrategy):
    """sfcbd (5989): enableSSLv3 key in sfcb.cfg, backed up first."""

    service = ServiceId.CIM_BROKER

    def _configure(self, ctx: HostContext, target: ProtocolSet) -> None:
        self._backup(ctx, SFCB_CONFIG)
        self._edit_config(ctx, target.has_legacy)
        self._restart(ctx, SFCBD_SCRIPT)

    def _revert(self, ctx: HostContext, snapshot: ProtocolSet) -> None:
        if not self._replay_backup(ctx, SFCB_CONFIG):
            self._edit_config(ctx, snapshot.has_legacy)
        self._restart(ctx, SFCBD_SCRIPT)

    def _edit_config(self, ctx: HostContext, enable_legacy: bool) -> None:
        if self._entry_present(ctx, SFCB_CONFIG, f"^{SFCB_SSLV3_KEY}:"):
            self._run(ctx, sfcb_set_command(SFCB_CONFIG, enable_legacy))
        else:
            self._run(ctx, sfcb_append_command(SFCB_CONFIG, enable_legacy))

        expected = f"^{SFCB_SSLV3_KEY}:{'true' if enable_legacy else 'false'}"
        if not self._entry_present(ctx, SFCB_CONFIG, expected):
            raise ConfigEditFailure(f"Unable to update {SFCB_SSLV3_KEY} in {SFCB_CONFIG}")


class StorageVPStrategy(ServiceStrategy):
    """vsanvpd (8080), 5.5 only: advanced option plus restart."""

    service = ServiceId.STORAGE_VP

    def prepare(self, ctx: HostContext) -> None:
        """
        Start vsanvpd if it is not running.

        Raises:
            ServiceUnavailable: If the daemon cannot be started
        """
        status = ctx.channel.run_sync(f"{VSANVP_SCRIPT} status")
        if process_state_from_status(status.stdout + status.stderr) == ProcessState.RUNNING:
            return
        logger.info(f"{VSANVP_SCRIPT} is not running, starting it")
        ctx.channel.run_sync(f"{VSANVP_SCRIPT} start")
        if not ctx.channel.wait_until_process_state(
            VSANVP_SCRIPT, ProcessState.RUNNING, ctx.service_wait_timeout
        ):
            raise ServiceUnavailable(f"Could not start {VSANVP_SCRIPT}")

    def _configure(self, ctx: HostContext, target: ProtocolSet) -> None:
        self._run(ctx, set_option_command(VSANVP_OPTION, disabled_protocols_value(target)))
        self._restart(ctx, VSANVP_SCRIPT)


STRATEGIES: Dict[ServiceId, ServiceStrategy] = {
    ServiceId.AUTH: AuthServiceStrategy(),
    ServiceId.EDGE_PROXY: EdgeProxyStrategy(),
    ServiceId.CIM_BROKER: CimBrokerStrategy(),
    ServiceId.STORAGE_VP: StorageVPStrategy(),
}


def strategy_for(service: ServiceId) -> Optional[ServiceStrategy]:
    return STRATEGIES.get(service)
