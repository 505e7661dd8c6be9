"""
Configuration management for the runner fleet controller.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from errors import ConfigurationError

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/devstorage.read_only",
    "https://www.googleapis.com/auth/logging.write",
    "https://www.googleapis.com/auth/monitoring.write",
    "https://www.googleapis.com/auth/servicecontrol",
    "https://www.googleapis.com/auth/service.management.readonly",
    "https://www.googleapis.com/auth/trace.append",
]

# Instance metadata keys shared by the provisioner and the on-instance agent
CREDENTIAL_METADATA_KEY = "github_pat"
REPOSITORY_METADATA_KEY = "github_repo"
LABELS_METADATA_KEY = "runner_labels"
IDLE_TIMEOUT_METADATA_KEY = "idle_timeout"
CHECK_INTERVAL_METADATA_KEY = "check_interval"

# Set on the image build instance only: pip requirement for this package
AGENT_PACKAGE_METADATA_KEY = "runner_fleet_package"


@dataclass
class FleetConfig:
    """Configuration for image build and fleet deploy operations."""

    project_id: str
    zone: str = "us-central1-a"
    repository: str = ""
    credential: Optional[str] = None
    template_name: str = "gh-runner-template"
    group_name: str = "gh-runner-mig"
    base_instance_name: str = "gh-runner"
    target_size: int = 2
    machine_type: str = "e2-standard-4"
    image_family: str = "gh-runner-image"
    base_image_family: str = "ubuntu-2204-lts"
    base_image_project: str = "ubuntu-os-cloud"
    builder_instance_name: str = "gh-runner-builder"
    boot_disk_size_gb: int = 100
    boot_disk_type: str = "pd-ssd"
    network_tags: List[str] = field(
        default_factory=lambda: ["http-server", "https-server"]
    )
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    runner_labels: List[str] = field(default_factory=lambda: ["gcp-golden"])
    idle_timeout: int = 600
    check_interval: int = 30
    operation_timeout: int = 900
    provision_timeout: int = 1800
    poll_interval: int = 10
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "FleetConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            FleetConfig instance
        """
        return cls(
            project_id=args.project,
            zone=args.zone,
            repository=getattr(args, "repo", "") or "",
            credential=getattr(args, "token", None),
            template_name=args.template_name,
            group_name=args.group_name,
            base_instance_name=args.base_instance_name,
            target_size=getattr(args, "size", 2),
            machine_type=getattr(args, "machine_type", "e2-standard-4"),
            image_family=args.image_family,
            runner_labels=_split_labels(getattr(args, "labels", "gcp-golden")),
            idle_timeout=getattr(args, "idle_timeout", 600),
            check_interval=getattr(args, "check_interval", 30),
            operation_timeout=args.operation_timeout,
            provision_timeout=getattr(args, "provision_timeout", 1800),
            poll_interval=args.poll_interval,
            verbose=args.verbose,
        )

    def validate(self) -> List[str]:
        """Validate configuration and return a list of problems."""
        errors = []
        if not self.project_id:
            errors.append("project is required")
        if self.target_size < 1:
            errors.append(f"Invalid target size: {self.target_size} (must be >= 1)")
        if self.check_interval < 1:
            errors.append(
                f"Invalid check interval: {self.check_interval} (must be >= 1)"
            )
        if self.idle_timeout < self.check_interval:
            errors.append(
                f"Idle timeout {self.idle_timeout}s is shorter than the "
                f"check interval {self.check_interval}s"
            )
        if self.poll_interval < 1:
            errors.append(f"Invalid poll interval: {self.poll_interval}")
        return errors


@dataclass
class AgentConfig:
    """Configuration for the on-instance registration agent and idle monitor."""

    repository: str
    labels: List[str] = field(default_factory=lambda: ["gcp-golden"])
    idle_timeout: int = 600
    check_interval: int = 30
    runner_dir: str = "/actions-runner"
    api_url: str = "https://api.github.com"

    @property
    def repository_url(self) -> str:
        return f"https://github.com/{self.repository}"

    @classmethod
    def from_metadata(cls, reader, runner_dir: str = "/actions-runner") -> "AgentConfig":
        """
        Build agent configuration from instance metadata attributes.

        Args:
            reader: Object with a get_attribute(key) -> Optional[str] method
            runner_dir: Local CI agent installation directory

        Returns:
            AgentConfig instance

        Raises:
            ConfigurationError: If a numeric attribute is not an integer
        """
        return cls(
            repository=reader.get_attribute(REPOSITORY_METADATA_KEY) or "",
            labels=_split_labels(reader.get_attribute(LABELS_METADATA_KEY) or "gcp-golden"),
            idle_timeout=_int_attribute(reader, IDLE_TIMEOUT_METADATA_KEY, 600),
            check_interval=_int_attribute(reader, CHECK_INTERVAL_METADATA_KEY, 30),
            runner_dir=runner_dir,
        )


def _int_attribute(reader, key: str, default: int) -> int:
    value = reader.get_attribute(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} metadata must be an integer, got {value!r}") from e


def _split_labels(value) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [label.strip() for label in str(value).split(",") if label.strip()]
