"""
Data models for the runner fleet controller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class MachineImage:
    """Immutable prebaked machine image."""

    name: str  # <family>-<version>
    family: str
    version: str
    source_disk: str
    creation_timestamp: Optional[str] = None
    self_link: Optional[str] = None


@dataclass
class FleetTemplate:
    """Global instance template the runner fleet is stamped from."""

    name: str
    machine_type: str
    source_image: str  # image self link or family URL
    boot_disk_size_gb: int = 100
    boot_disk_type: str = "pd-ssd"
    network_tags: List[str] = field(default_factory=list)
    scopes: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    service_account: str = "default"


@dataclass
class InstanceGroup:
    """Zonal managed instance group referencing a FleetTemplate."""

    name: str
    zone: str
    template_name: str
    target_size: int
    base_instance_name: str


@dataclass
class RegistrationToken:
    """Short-lived control plane token (registration or removal)."""

    token: str
    expires_at: Optional[str] = None

    def __repr__(self) -> str:
        return f"RegistrationToken(token='***', expires_at={self.expires_at!r})"


@dataclass
class RunnerInstance:
    """The runner identity registered from a live instance."""

    hostname: str
    labels: List[str]
    registered_at: Optional[float] = None


class MonitorState(Enum):
    """Idle monitor phases."""

    ACTIVE = "active"
    IDLE = "idle"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class IdleTimerState:
    """Per-instance idle counter and current monitor phase."""

    phase: MonitorState = MonitorState.IDLE
    idle_seconds: int = 0

    def __str__(self) -> str:
        if self.phase is MonitorState.IDLE:
            return f"IDLE({self.idle_seconds})"
        return self.phase.name
