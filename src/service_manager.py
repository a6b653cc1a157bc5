"""
Host service management through the vSphere Web Services API.
"""

import logging
from typing import List, Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from collaborators import InventoryClient, ProcessState, ServiceManager
from errors import ConnectivityError, ServiceUnavailable
from models import HostRef

logger = logging.getLogger(__name__)


class VSphereServiceManager(ServiceManager, InventoryClient):
    """
    Starts and stops host services (e.g. TSM-SSH) via HostServiceSystem.

    Also serves the host inventory over SOAP for vCenter Servers without the
    REST API (6.0 and older, the only ones that manage ESXi 5.0/5.1).
    """

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        port: int = 443,
        verify_ssl: bool = False,
    ):
        self.endpoint = endpoint
        self.username = username
        self._password = password
        self.port = port
        self.verify_ssl = verify_ssl
        self.si = None

    def connect(self) -> None:
        """
        Log into the endpoint's SOAP API.

        Raises:
            ConnectivityError: If the login fails
        """
        try:
            self.si = SmartConnect(
                host=self.endpoint,
                user=self.username,
                pwd=self._password,
                port=self.port,
                disableSslCertValidation=not self.verify_ssl,
            )
        except vim.fault.InvalidLogin as e:
            raise ConnectivityError(
                f"Login to {self.endpoint} rejected; check user name/password"
            ) from e
        except (vmodl.MethodFault, OSError) as e:
            raise ConnectivityError(f"Unable to connect to {self.endpoint}: {e}") from e

    def login(self) -> None:
        if self.si is None:
            self.connect()

    @property
    def is_standalone_host(self) -> bool:
        """True when the endpoint is an ESXi host rather than vCenter Server."""
        if self.si is None:
            raise ConnectivityError("Not connected; call connect() first")
        return self.si.content.about.apiType == "HostAgent"

    def close(self) -> None:
        if self.si is not None:
            Disconnect(self.si)
            self.si = None

    def _host_systems(self) -> List[object]:
        if self.si is None:
            raise ConnectivityError("Not connected; call connect() first")
        content = self.si.RetrieveContent()
        view = content.viewManager.CreateContainerView(
            content.rootFolder, [vim.HostSystem], True
        )
        try:
            return list(view.view)
        finally:
            view.Destroy()

    def _host_refs(self) -> List[HostRef]:
        try:
            return [
                HostRef(
                    name=host.name,
                    host_id=host._moId,
                    connected=host.runtime.connectionState == "connected",
                )
                for host in self._host_systems()
            ]
        except (vmodl.MethodFault, OSError) as e:
            raise ConnectivityError(f"Cannot list hosts of {self.endpoint}: {e}") from e

    def list_connected_hosts(self) -> List[HostRef]:
        hosts = [ref for ref in self._host_refs() if ref.connected]
        logger.info(f"Found {len(hosts)} connected host(s) on {self.endpoint}")
        return hosts

    def resolve_host(self, name: str) -> Optional[HostRef]:
        for ref in self._host_refs():
            if ref.name == name:
                return ref
        return None

    def _service_system(self, host: HostRef):
        if self.si is None:
            raise ConnectivityError("Not connected; call connect() first")
        host_system = vim.HostSystem(host.host_id, self.si._stub)
        return host_system.configManager.serviceSystem

    def _find_service(self, host: HostRef, service_key: str) -> Optional[object]:
        for service in self._service_system(host).serviceInfo.service:
            if service.key.lower() == service_key.lower():
                return service
        return None

    def get_service_state(self, host: HostRef, service_key: str) -> ProcessState:
        try:
            service = self._find_service(host, service_key)
        except (vmodl.MethodFault, OSError) as e:
            raise ConnectivityError(
                f"Cannot read services of {host.name}: {e}"
            ) from e
        if service is None:
            raise ServiceUnavailable(f"Service {service_key} not found on {host.name}")
        return ProcessState.RUNNING if service.running else ProcessState.STOPPED

    def start_service(self, host: HostRef, service_key: str) -> None:
        logger.info(f"Starting service {service_key} on {host.name}")
        try:
            self._service_system(host).StartService(id=service_key)
        except (vmodl.MethodFault, OSError) as e:
            raise ServiceUnavailable(
                f"Could not start {service_key} on {host.name}: {e}"
            ) from e

    def stop_service(self, host: HostRef, service_key: str) -> None:
        logger.info(f"Stopping service {service_key} on {host.name}")
        try:
            self._service_system(host).StopService(id=service_key)
        except (vmodl.MethodFault, OSError) as e:
            raise ServiceUnavailable(
                f"Could not stop {service_key} on {host.name}: {e}"
            ) from e
