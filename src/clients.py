"""
REST API client for the vCenter Server inventory (vSphere Automation API).

Uses the /rest namespace introduced in vCenter 6.5, the last release that
manages ESXi 5.5 hosts; responses are wrapped in a "value" envelope. vCenter
6.0 and older have no REST API and are inventoried over SOAP instead
(VSphereServiceManager).
"""

import logging
import time
from typing import List, Optional

import requests

from collaborators import InventoryClient
from errors import ConnectivityError
from models import HostRef

logger = logging.getLogger(__name__)

SESSION_HEADER = "vmware-api-session-id"
SESSION_PATH = "com/vmware/cis/session"
HOSTS_PATH = "vcenter/host"


def _value(resp: requests.Response):
    """Unwrap the {"value": ...} envelope of a /rest response."""
    try:
        return resp.json()["value"]
    except (ValueError, KeyError, TypeError) as e:
        raise ConnectivityError(f"Unexpected response from vCenter: {resp.text[:200]}") from e


class VSphereRestClient(InventoryClient):
    """REST client for the vCenter Server host inventory."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        verify_ssl: bool = False,
        timeout_s: int = 60,
        max_retries: int = 3,
        base_delay: float = 2.0,
    ):
        """
        Initialize the vCenter REST client.

        Args:
            endpoint: vCenter Server address
            username: SSO user name
            password: SSO password
            verify_ssl: Verify the server certificate
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
        """
        self.endpoint = endpoint
        self.username = username
        self._password = password
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        self.session = requests.Session()
        self.session.verify = verify_ssl
        self.session_id: Optional[str] = None

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"https://{self.endpoint}/rest/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            The final response

        Raises:
            ConnectivityError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except requests.RequestException as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)
                continue

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"Retryable error {resp.status_code}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                time.sleep(delay)
                continue

            return resp

        raise ConnectivityError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def login(self) -> None:
        """
        Create an API session with the configured credentials.

        Raises:
            ConnectivityError: If the endpoint rejects the credentials or is unreachable
        """
        resp = self._request_with_retry(
            "POST", self._url(SESSION_PATH), auth=(self.username, self._password)
        )
        if resp.status_code not in (200, 201):
            raise ConnectivityError(
                f"Login to {self.endpoint} failed ({resp.status_code}). Check the "
                "user name/password and that the endpoint is reachable"
            )
        self.session_id = _value(resp)
        self.session.headers[SESSION_HEADER] = self.session_id
        logger.info(f"Successfully logged into vSphere: {self.endpoint}")

    def logout(self) -> None:
        """Delete the API session, ignoring an already expired one."""
        if not self.session_id:
            return
        try:
            self._request_with_retry("DELETE", self._url(SESSION_PATH))
        except ConnectivityError as e:
            logger.warning(f"Could not log out of {self.endpoint}: {e}")
        finally:
            self.session.headers.pop(SESSION_HEADER, None)
            self.session_id = None

    def _list_hosts(self, params: dict) -> List[HostRef]:
        if not self.session_id:
            raise ConnectivityError("Not logged in; call login() first")
        resp = self._request_with_retry("GET", self._url(HOSTS_PATH), params=params)
        if resp.status_code != 200:
            raise ConnectivityError(
                f"List hosts failed ({resp.status_code}): {resp.text}"
            )
        return [
            HostRef(
                name=item["name"],
                host_id=item["host"],
                connected=str(item.get("connection_state", "")).upper() == "CONNECTED",
            )
            for item in _value(resp)
        ]

    def list_connected_hosts(self) -> List[HostRef]:
        """
        List all hosts in CONNECTED state.

        Returns:
            List of HostRef objects
        """
        hosts = self._list_hosts({"filter.connection_states": "CONNECTED"})
        logger.info(f"Found {len(hosts)} connected host(s) on {self.endpoint}")
        return hosts

    def resolve_host(self, name: str) -> Optional[HostRef]:
        """
        Look up a host by its inventory name.

        Args:
            name: Host name as shown in the inventory

        Returns:
            HostRef if found, None otherwise
        """
        hosts = self._list_hosts({"filter.names": name})
        if not hosts:
            return None
        return hosts[0]
