"""
Boot-time registration of a fleet instance with the CI control plane.
"""

import logging
import socket
import time
from typing import Callable, Optional

from clients import MetadataClient
from config import CREDENTIAL_METADATA_KEY, AgentConfig
from control_plane import ControlPlaneClient
from errors import ConfigurationError
from models import RunnerInstance
from runner_service import RunnerService

logger = logging.getLogger(__name__)


class RegistrationAgent:
    """Registers the local CI agent once per instance boot."""

    def __init__(
        self,
        config: AgentConfig,
        metadata: MetadataClient,
        service: RunnerService,
        client_factory: Callable[..., ControlPlaneClient] = ControlPlaneClient,
        hostname: Optional[str] = None,
    ):
        """
        Initialize the registration agent.

        Args:
            config: Agent configuration
            metadata: Instance metadata reader holding the credential
            service: Local CI agent service wrapper
            client_factory: Builds a control plane client from (repository, credential)
            hostname: Runner identity; defaults to this host's name
        """
        self.config = config
        self.metadata = metadata
        self.service = service
        self.client_factory = client_factory
        self.hostname = hostname or socket.gethostname()
        self.control_plane: Optional[ControlPlaneClient] = None

    def register(self) -> RunnerInstance:
        """
        Register and start the local CI agent.

        Returns:
            The registered RunnerInstance

        Raises:
            ConfigurationError: Credential or repository missing from metadata
            RegistrationError: Control plane returned no usable token
            RunnerServiceError: Local agent configure/start failed
        """
        credential = (self.metadata.get_attribute(CREDENTIAL_METADATA_KEY) or "").strip()
        if not credential:
            raise ConfigurationError(
                f"{CREDENTIAL_METADATA_KEY} metadata not found on this instance"
            )
        if not self.config.repository:
            raise ConfigurationError("Repository metadata not found on this instance")

        self.control_plane = self.client_factory(
            self.config.repository, credential, api_url=self.config.api_url
        )
        if self.service.is_configured():
            # Restart with the boot disk kept: config.sh refuses to run twice
            logger.info(
                f"Runner {self.hostname} already configured on this disk, reusing registration"
            )
        else:
            token = self.control_plane.create_registration_token()

            # hostname is unique within the instance group, so concurrent
            # instances never register under the same name
            self.service.configure(
                url=self.config.repository_url,
                token=token.token,
                name=self.hostname,
                labels=self.config.labels,
            )

        if self.service.is_installed():
            logger.info("Runner service already installed")
        else:
            self.service.install()
        self.service.start()

        logger.info(f"✓ Runner {self.hostname} registered and started")
        return RunnerInstance(
            hostname=self.hostname,
            labels=list(self.config.labels),
            registered_at=time.time(),
        )
