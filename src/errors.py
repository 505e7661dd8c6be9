"""
Exception types for the runner fleet controller.
"""

from typing import Optional


class FleetError(Exception):
    """Base class for all runner fleet errors."""


class ConfigurationError(FleetError):
    """Missing credential or required configuration."""


class AuthenticationError(FleetError):
    """Compute provider session is not authenticated."""


class ProviderAPIError(FleetError, RuntimeError):
    """Compute provider API call returned an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class OperationError(FleetError):
    """A long-running provider operation finished with an error."""


class ProvisioningError(FleetError):
    """The provisioning script on the build instance reported a failure."""


class ProvisioningTimeoutError(FleetError, TimeoutError):
    """A bounded wait expired before the expected condition was observed."""


class RegistrationError(FleetError):
    """The control plane did not issue a usable registration token."""


class RemovalError(FleetError):
    """The control plane could not be reached or rejected runner removal."""


class RunnerServiceError(FleetError):
    """A local CI agent script exited with a non-zero status."""
