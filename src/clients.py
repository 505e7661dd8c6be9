"""
Compute fleet provider interface and its Compute Engine REST (v1) client.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import google.auth
import requests
from google.auth.exceptions import DefaultCredentialsError, RefreshError, TransportError
from google.auth.transport.requests import AuthorizedSession, Request

from errors import (
    AuthenticationError,
    OperationError,
    ProviderAPIError,
    ProvisioningTimeoutError,
)
from models import FleetTemplate, InstanceGroup, MachineImage

logger = logging.getLogger(__name__)

API_BASE = "https://compute.googleapis.com/compute/v1"
METADATA_BASE = "http://metadata.google.internal/computeMetadata/v1/instance"

AUTH_REMEDIATION = (
    "Compute Engine session is not authenticated. "
    "Run 'gcloud auth application-default login' (or set "
    "GOOGLE_APPLICATION_CREDENTIALS to a service account key) and retry."
)


class FleetProvider(ABC):
    """Operations the controller consumes from a compute provider.

    ``get_*`` methods return None when the resource does not exist. Mutating
    methods block until the provider reports the change as complete.
    """

    @abstractmethod
    def check_authenticated(self) -> None:
        """Raise AuthenticationError unless the session can make calls."""

    @abstractmethod
    def get_image_from_family(
        self, family: str, project: Optional[str] = None
    ) -> Optional[Dict]: ...

    @abstractmethod
    def create_image(
        self, name: str, family: str, source_disk: str, zone: str
    ) -> MachineImage: ...

    @abstractmethod
    def delete_image(self, name: str) -> None: ...

    @abstractmethod
    def get_instance(self, name: str, zone: str) -> Optional[Dict]: ...

    @abstractmethod
    def create_instance(
        self,
        name: str,
        zone: str,
        source_image: str,
        metadata: Dict[str, str],
        machine_type: str = "e2-standard-4",
        disk_size_gb: int = 100,
    ) -> None: ...

    @abstractmethod
    def stop_instance(self, name: str, zone: str) -> None: ...

    @abstractmethod
    def delete_instance(self, name: str, zone: str) -> None: ...

    @abstractmethod
    def get_serial_output(self, name: str, zone: str, start: int = 0) -> Tuple[str, int]:
        """Return (new console output, offset to resume from)."""

    @abstractmethod
    def get_template(self, name: str) -> Optional[Dict]: ...

    @abstractmethod
    def create_template(self, template: FleetTemplate) -> None: ...

    @abstractmethod
    def delete_template(self, name: str) -> None: ...

    @abstractmethod
    def get_group(self, name: str, zone: str) -> Optional[Dict]: ...

    @abstractmethod
    def create_group(self, group: InstanceGroup) -> None: ...

    @abstractmethod
    def delete_group(self, name: str, zone: str) -> None: ...


class ComputeRestClient(FleetProvider):
    """REST client for the Compute Engine v1 API."""

    # 409 means "already exists" on Compute Engine and is never retried
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        project_id: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
        operation_timeout: int = 900,
        poll_interval: int = 5,
    ):
        """
        Initialize the Compute Engine REST client.

        Args:
            project_id: GCP project ID
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            operation_timeout: Maximum wait for a long-running operation
            poll_interval: Interval between operation polls (seconds)

        Raises:
            AuthenticationError: If no application default credentials exist
        """
        self.project_id = project_id
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.operation_timeout = operation_timeout
        self.poll_interval = poll_interval

        try:
            creds, _ = google.auth.default(
                scopes=["https://www.googleapis.com/auth/cloud-platform"]
            )
        except DefaultCredentialsError as e:
            raise AuthenticationError(f"{AUTH_REMEDIATION} ({e})") from e
        self.credentials = creds
        self.session = AuthorizedSession(creds)

    def _url(self, path: str) -> str:
        """Construct full API URL from a project-relative path."""
        return f"{API_BASE}/projects/{self.project_id}/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            The final response (which may still carry a non-2xx status)

        Raises:
            ProviderAPIError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except requests.exceptions.RequestException as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)
                continue

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                delay = self._calculate_delay(attempt, resp)
                error_info = self._error_message(resp)
                logger.warning(
                    f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                time.sleep(delay)
                continue

            return resp

        raise ProviderAPIError(f"Max retries exceeded. Last error: {last_error}")

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
        return min(delay + jitter, 120.0)

    @staticmethod
    def _error_message(resp) -> str:
        try:
            return resp.json().get("error", {}).get("message", "")
        except ValueError:
            return ""

    def _call(self, method: str, path: str, action: str, **kwargs) -> Dict:
        """Issue a request and raise ProviderAPIError unless it succeeded."""
        resp = self._request_with_retry(method, self._url(path), **kwargs)
        if resp.status_code not in (200, 201, 202, 204):
            raise ProviderAPIError(
                f"{action} failed ({resp.status_code}): "
                f"{self._error_message(resp) or resp.text[:500]}",
                status_code=resp.status_code,
            )
        return resp.json() if resp.content else {}

    def _describe(self, path: str, action: str) -> Optional[Dict]:
        try:
            return self._call("GET", path, action)
        except ProviderAPIError as e:
            if e.is_not_found:
                return None
            raise

    def wait_for_operation(self, op: Dict, timeout: Optional[int] = None) -> Dict:
        """
        Poll a zonal or global operation until it is DONE.

        Args:
            op: Operation resource as returned by a mutating call
            timeout: Maximum wait in seconds (defaults to operation_timeout)

        Returns:
            The finished operation

        Raises:
            ProvisioningTimeoutError: If the operation is not DONE in time
            OperationError: If the operation finished with an error
        """
        timeout = self.operation_timeout if timeout is None else timeout
        start = time.time()
        op_name = op.get("name", "<unknown>")

        while op.get("status") != "DONE":
            elapsed = time.time() - start
            if elapsed > timeout:
                raise ProvisioningTimeoutError(
                    f"Operation {op_name} not done after {elapsed:.0f}s"
                )
            time.sleep(self.poll_interval)
            resp = self._request_with_retry("GET", op["selfLink"])
            if resp.status_code != 200:
                raise ProviderAPIError(
                    f"Get operation failed ({resp.status_code}): {resp.text[:500]}",
                    status_code=resp.status_code,
                )
            op = resp.json()

        if "error" in op:
            messages = "; ".join(
                err.get("message", str(err)) for err in op["error"].get("errors", [])
            )
            raise OperationError(
                f"Operation {op_name} ({op.get('operationType', '')} "
                f"{op.get('targetLink', '')}) failed: {messages or op['error']}"
            )
        return op

    def check_authenticated(self) -> None:
        try:
            self.credentials.refresh(Request())
        except (RefreshError, TransportError) as e:
            raise AuthenticationError(f"{AUTH_REMEDIATION} ({e})") from e

    # Images

    def get_image_from_family(
        self, family: str, project: Optional[str] = None
    ) -> Optional[Dict]:
        project = project or self.project_id
        url = f"{API_BASE}/projects/{project}/global/images/family/{family}"
        resp = self._request_with_retry("GET", url)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise ProviderAPIError(
                f"Get image family {family} failed ({resp.status_code}): {resp.text[:500]}",
                status_code=resp.status_code,
            )
        return resp.json()

    def create_image(
        self, name: str, family: str, source_disk: str, zone: str
    ) -> MachineImage:
        body = {
            "name": name,
            "family": family,
            "sourceDisk": f"projects/{self.project_id}/zones/{zone}/disks/{source_disk}",
            "labels": {"managed-by": "runner-fleet"},
        }
        op = self._call("POST", "global/images", f"Create image {name}", json=body)
        self.wait_for_operation(op)
        data = self._call("GET", f"global/images/{name}", f"Get image {name}")
        return MachineImage(
            name=name,
            family=family,
            version=name[len(family) + 1 :] if name.startswith(family + "-") else name,
            source_disk=data.get("sourceDisk", body["sourceDisk"]),
            creation_timestamp=data.get("creationTimestamp"),
            self_link=data.get("selfLink"),
        )

    def delete_image(self, name: str) -> None:
        op = self._call("DELETE", f"global/images/{name}", f"Delete image {name}")
        self.wait_for_operation(op)

    # Instances

    def get_instance(self, name: str, zone: str) -> Optional[Dict]:
        return self._describe(f"zones/{zone}/instances/{name}", f"Get instance {name}")

    def create_instance(
        self,
        name: str,
        zone: str,
        source_image: str,
        metadata: Dict[str, str],
        machine_type: str = "e2-standard-4",
        disk_size_gb: int = 100,
    ) -> None:
        body = {
            "name": name,
            "machineType": f"zones/{zone}/machineTypes/{machine_type}",
            "disks": [
                {
                    "boot": True,
                    "autoDelete": True,
                    "initializeParams": {
                        "sourceImage": source_image,
                        "diskSizeGb": str(disk_size_gb),
                    },
                }
            ],
            "networkInterfaces": [_default_network_interface()],
            "metadata": _metadata_items(metadata),
        }
        op = self._call(
            "POST", f"zones/{zone}/instances", f"Create instance {name}", json=body
        )
        self.wait_for_operation(op)

    def stop_instance(self, name: str, zone: str) -> None:
        op = self._call(
            "POST", f"zones/{zone}/instances/{name}/stop", f"Stop instance {name}"
        )
        self.wait_for_operation(op)

    def delete_instance(self, name: str, zone: str) -> None:
        op = self._call(
            "DELETE", f"zones/{zone}/instances/{name}", f"Delete instance {name}"
        )
        self.wait_for_operation(op)

    def get_serial_output(self, name: str, zone: str, start: int = 0) -> Tuple[str, int]:
        data = self._call(
            "GET",
            f"zones/{zone}/instances/{name}/serialPort",
            f"Get serial output of {name}",
            params={"port": 1, "start": start},
        )
        return data.get("contents", ""), int(data.get("next", start))

    # Instance templates (global)

    def get_template(self, name: str) -> Optional[Dict]:
        return self._describe(
            f"global/instanceTemplates/{name}", f"Get instance template {name}"
        )

    def create_template(self, template: FleetTemplate) -> None:
        body = {
            "name": template.name,
            "properties": {
                "machineType": template.machine_type,
                "tags": {"items": list(template.network_tags)},
                "metadata": _metadata_items(template.metadata),
                "disks": [
                    {
                        "boot": True,
                        "autoDelete": True,
                        "deviceName": template.name,
                        "initializeParams": {
                            "sourceImage": template.source_image,
                            "diskSizeGb": str(template.boot_disk_size_gb),
                            "diskType": template.boot_disk_type,
                        },
                    }
                ],
                "networkInterfaces": [_default_network_interface()],
                "serviceAccounts": [
                    {"email": template.service_account, "scopes": list(template.scopes)}
                ],
                "scheduling": {
                    "onHostMaintenance": "MIGRATE",
                    "provisioningModel": "STANDARD",
                    "automaticRestart": True,
                },
            },
        }
        op = self._call(
            "POST",
            "global/instanceTemplates",
            f"Create instance template {template.name}",
            json=body,
        )
        self.wait_for_operation(op)

    def delete_template(self, name: str) -> None:
        op = self._call(
            "DELETE",
            f"global/instanceTemplates/{name}",
            f"Delete instance template {name}",
        )
        self.wait_for_operation(op)

    # Managed instance groups (zonal)

    def get_group(self, name: str, zone: str) -> Optional[Dict]:
        return self._describe(
            f"zones/{zone}/instanceGroupManagers/{name}", f"Get instance group {name}"
        )

    def create_group(self, group: InstanceGroup) -> None:
        body = {
            "name": group.name,
            "baseInstanceName": group.base_instance_name,
            # Templates are global; a regional template URL here is rejected
            "instanceTemplate": (
                f"projects/{self.project_id}/global/instanceTemplates/{group.template_name}"
            ),
            "targetSize": group.target_size,
        }
        op = self._call(
            "POST",
            f"zones/{group.zone}/instanceGroupManagers",
            f"Create instance group {group.name}",
            json=body,
        )
        self.wait_for_operation(op)

    def delete_group(self, name: str, zone: str) -> None:
        op = self._call(
            "DELETE",
            f"zones/{zone}/instanceGroupManagers/{name}",
            f"Delete instance group {name}",
        )
        self.wait_for_operation(op)


class MetadataClient:
    """Reads instance metadata attributes from inside a running instance."""

    def __init__(self, timeout_s: int = 5, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def get_attribute(self, key: str) -> Optional[str]:
        """
        Read a custom metadata attribute.

        Args:
            key: Attribute name

        Returns:
            The attribute value, or None if it is not set

        Raises:
            ProviderAPIError: If the metadata server is unreachable or returns
                another error
        """
        try:
            resp = self.session.get(
                f"{METADATA_BASE}/attributes/{key}",
                headers={"Metadata-Flavor": "Google"},
                timeout=self.timeout_s,
            )
        except requests.exceptions.RequestException as e:
            raise ProviderAPIError(f"Metadata read of {key} failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise ProviderAPIError(
                f"Metadata read of {key} failed ({resp.status_code})",
                status_code=resp.status_code,
            )
        return resp.text


def _metadata_items(metadata: Dict[str, str]) -> Dict[str, List[Dict[str, str]]]:
    return {"items": [{"key": k, "value": str(v)} for k, v in metadata.items()]}


def _default_network_interface() -> Dict:
    return {
        "network": "global/networks/default",
        "accessConfigs": [
            {"name": "External NAT", "type": "ONE_TO_ONE_NAT", "networkTier": "PREMIUM"}
        ],
    }
