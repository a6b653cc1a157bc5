"""
SSH command channel to an ESXi host.
"""

import logging
import shlex
import socket
import time
from typing import List

import paramiko

from collaborators import (
    CommandChannel,
    CommandResult,
    ProcessState,
    process_state_from_status,
)
from errors import ConnectivityError

logger = logging.getLogger(__name__)


class SSHCommandChannel(CommandChannel):
    """Runs shell commands on a host over a single SSH connection."""

    def __init__(
        self,
        client: paramiko.SSHClient,
        address: str,
        command_timeout: float = 120,
        poll_interval: float = 5,
    ):
        self.client = client
        self.address = address
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval
        # Sessions started by run_async, closed once the process state settles.
        self._async_sessions: List[paramiko.Channel] = []

    @classmethod
    def open(
        cls,
        address: str,
        username: str,
        password: str,
        port: int = 22,
        connect_timeout: float = 30,
        command_timeout: float = 120,
    ) -> "SSHCommandChannel":
        """
        Connect to a host with password authentication.

        Raises:
            ConnectivityError: If the connection or the login fails
        """
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                address,
                port=port,
                username=username,
                password=password,
                timeout=connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise ConnectivityError(
                f"SSH login to {address} rejected; check the host user name/password: {e}"
            ) from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise ConnectivityError(f"Unable to log into {address} through SSH: {e}") from e

        logger.info(f"Logged into host {address} through SSH")
        return cls(client, address, command_timeout=command_timeout)

    def run_sync(self, command: str) -> CommandResult:
        logger.debug(f"[{self.address}] $ {command}")
        try:
            _, stdout, stderr = self.client.exec_command(
                command, timeout=self.command_timeout
            )
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            exit_status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            raise ConnectivityError(
                f"Command failed to run on {self.address}: {command}: {e}"
            ) from e

        if exit_status != 0:
            logger.debug(f"[{self.address}] exit={exit_status} stderr={err.strip()}")
        return CommandResult(stdout=out, stderr=err, exit_status=exit_status)

    def run_async(self, command: str) -> None:
        logger.debug(f"[{self.address}] $ {command} (async)")
        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            raise ConnectivityError(f"SSH connection to {self.address} is closed")
        try:
            chan = transport.open_session()
            self._async_sessions.append(chan)
            chan.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            raise ConnectivityError(
                f"Command failed to start on {self.address}: {command}: {e}"
            ) from e

    def wait_until_process_state(
        self, service_script: str, state: ProcessState, timeout: float
    ) -> bool:
        deadline = time.monotonic() + timeout
        try:
            while True:
                result = self.run_sync(f"{service_script} status")
                current = process_state_from_status(result.stdout + result.stderr)
                if current == state:
                    return True
                if time.monotonic() >= deadline:
                    logger.error(
                        f"Timeout waiting for {service_script} to be {state.value} on {self.address}"
                    )
                    return False
                time.sleep(self.poll_interval)
        finally:
            self._close_async_sessions()

    def _close_async_sessions(self) -> None:
        while self._async_sessions:
            self._async_sessions.pop().close()

    def copy_file(self, src: str, dst: str) -> bool:
        result = self.run_sync(f"cp -f {shlex.quote(src)} {shlex.quote(dst)}")
        return result.ok

    def file_exists(self, path: str) -> bool:
        result = self.run_sync(f"test -f {shlex.quote(path)}")
        return result.ok

    def close(self) -> None:
        self._close_async_sessions()
        self.client.close()
        logger.debug(f"Closed SSH connection to {self.address}")
