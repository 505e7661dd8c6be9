"""
Client for the CI control plane (GitHub Actions self-hosted runner API).
"""

import logging
from typing import Dict, List, Optional

import requests

from errors import ProviderAPIError, RegistrationError, RemovalError
from models import RegistrationToken

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"

# jq -r .token prints this when the field is missing
INVALID_TOKENS = {"", "null", "None"}


class ControlPlaneClient:
    """Issues registration/removal tokens and manages runner identities."""

    def __init__(
        self,
        repository: str,
        credential: str,
        api_url: str = API_URL,
        timeout_s: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the control plane client.

        Args:
            repository: owner/name of the repository runners serve
            credential: Long-lived personal access token
            api_url: API base URL
            timeout_s: Request timeout in seconds
            session: Optional pre-built requests session
        """
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"token {credential}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "runner-fleet",
            }
        )

    def _url(self, endpoint: str) -> str:
        return f"{self.api_url}/repos/{self.repository}/{endpoint.lstrip('/')}"

    def _issue_token(self, endpoint: str) -> RegistrationToken:
        """POST to a token endpoint; raises ProviderAPIError or ValueError."""
        try:
            resp = self.session.post(self._url(endpoint), timeout=self.timeout_s)
        except requests.exceptions.RequestException as e:
            raise ProviderAPIError(f"POST {endpoint} failed: {e}") from e
        if resp.status_code not in (200, 201):
            raise ProviderAPIError(
                f"POST {endpoint} failed ({resp.status_code}): {resp.text[:300]}",
                status_code=resp.status_code,
            )
        data = resp.json()
        token = data.get("token")
        if token is None or str(token).strip() in INVALID_TOKENS:
            raise ValueError(f"{endpoint} returned no token")
        return RegistrationToken(token=str(token), expires_at=data.get("expires_at"))

    def create_registration_token(self) -> RegistrationToken:
        """
        Exchange the credential for a short-lived registration token.

        Raises:
            RegistrationError: If the control plane fails or returns no token
        """
        logger.info("Obtaining registration token...")
        try:
            token = self._issue_token("actions/runners/registration-token")
        except (ProviderAPIError, ValueError) as e:
            raise RegistrationError(
                f"Failed to get registration token, check the PAT permissions: {e}"
            ) from e
        logger.info(f"Registration token obtained (expires: {token.expires_at})")
        return token

    def create_removal_token(self) -> RegistrationToken:
        """
        Fetch a fresh removal token for deregistering a runner.

        Raises:
            RemovalError: If the control plane fails or returns no token
        """
        logger.info("Obtaining removal token...")
        try:
            return self._issue_token("actions/runners/remove-token")
        except (ProviderAPIError, ValueError) as e:
            raise RemovalError(f"Failed to get removal token: {e}") from e

    def list_runners(self) -> List[Dict]:
        """
        List all self-hosted runners registered to the repository.

        Returns:
            List of runner dictionaries (id, name, status, busy, labels)
        """
        runners: List[Dict] = []
        page = 1
        while True:
            try:
                resp = self.session.get(
                    self._url("actions/runners"),
                    params={"per_page": 100, "page": page},
                    timeout=self.timeout_s,
                )
            except requests.exceptions.RequestException as e:
                raise ProviderAPIError(f"List runners failed: {e}") from e
            if resp.status_code != 200:
                raise ProviderAPIError(
                    f"List runners failed ({resp.status_code}): {resp.text[:300]}",
                    status_code=resp.status_code,
                )
            data = resp.json()
            batch = data.get("runners", [])
            runners.extend(batch)
            if not batch or len(runners) >= data.get("total_count", 0):
                break
            page += 1
        return runners

    def delete_runner(self, runner_id: int) -> None:
        """
        Remove a runner identity by id.

        Raises:
            RemovalError: If the control plane rejects the removal
        """
        try:
            resp = self.session.delete(
                self._url(f"actions/runners/{runner_id}"), timeout=self.timeout_s
            )
        except requests.exceptions.RequestException as e:
            raise RemovalError(f"Delete runner {runner_id} failed: {e}") from e
        if resp.status_code not in (204, 404):
            raise RemovalError(
                f"Delete runner {runner_id} failed ({resp.status_code}): {resp.text[:300]}"
            )

    def prune_offline_runners(self, name_prefix: str) -> List[str]:
        """
        Remove offline, idle runner identities left behind by terminated instances.

        Args:
            name_prefix: Only runners whose name starts with this are considered

        Returns:
            Names of the runners removed
        """
        removed: List[str] = []
        for runner in self.list_runners():
            name = runner.get("name", "")
            if not name.startswith(name_prefix):
                continue
            if runner.get("status") != "offline" or runner.get("busy"):
                continue
            try:
                self.delete_runner(runner["id"])
                removed.append(name)
                logger.info(f"Removed offline runner {name} (id={runner['id']})")
            except RemovalError as e:
                logger.warning(f"Could not remove runner {name}: {e}")
        return removed
