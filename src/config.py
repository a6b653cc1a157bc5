"""
Configuration management for the ESXi security protocol reconfiguration tool.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

ENDPOINT_PASSWORD_ENV = "VSPHERE_PASSWORD"
HOST_PASSWORD_ENV = "ESXI_PASSWORD"


@dataclass
class ReconfigConfig:
    """Configuration for a reconfiguration run."""

    endpoint: str
    username: str
    password: str = field(repr=False)
    host_username: str
    host_password: str = field(repr=False)
    enable_legacy: bool
    hosts: List[str] = field(default_factory=list)
    all_connected: bool = False
    bypass_version_check: bool = False
    dry_run: bool = False
    assume_yes: bool = False
    verify_ssl: bool = False
    ssh_port: int = 22
    command_timeout: int = 120
    service_wait_timeout: int = 300
    probe_timeout: float = 10.0
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "ReconfigConfig":
        """
        Create configuration from command-line arguments.

        Passwords not given on the command line are read from the
        VSPHERE_PASSWORD / ESXI_PASSWORD environment variables.

        Args:
            args: Parsed argparse arguments

        Returns:
            ReconfigConfig instance

        Raises:
            ValueError: If a password is missing
        """
        password = _password(args.password, ENDPOINT_PASSWORD_ENV, "--password")
        host_password = _password(
            args.host_password, HOST_PASSWORD_ENV, "--host-password"
        )
        return cls(
            endpoint=args.endpoint,
            username=args.username,
            password=password,
            host_username=args.host_username,
            host_password=host_password,
            enable_legacy=args.enable_legacy,
            hosts=list(args.hosts or []),
            all_connected=args.all_connected,
            bypass_version_check=args.bypass_version_check,
            dry_run=args.dry_run,
            assume_yes=args.yes,
            verify_ssl=args.verify_ssl,
            ssh_port=args.ssh_port,
            command_timeout=args.command_timeout,
            service_wait_timeout=args.service_wait_timeout,
            probe_timeout=args.probe_timeout,
            verbose=args.verbose,
        )


def _password(value: Optional[str], env_var: str, flag: str) -> str:
    if value:
        return value
    from_env = os.environ.get(env_var)
    if from_env:
        return from_env
    raise ValueError(f"No password given: use {flag} or set {env_var}")
