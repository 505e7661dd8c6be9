"""
Self-hosted CI runner fleet controller.
"""

from clients import ComputeRestClient, FleetProvider, MetadataClient
from config import AgentConfig, FleetConfig
from control_plane import ControlPlaneClient
from idle_monitor import IdleMonitor
from image_builder import ImageBuilder
from log_utils import setup_logging
from models import (
    FleetTemplate,
    IdleTimerState,
    InstanceGroup,
    MachineImage,
    MonitorState,
    RegistrationToken,
    RunnerInstance,
)
from provisioner import FleetProvisioner
from registration import RegistrationAgent

__all__ = [
    "ComputeRestClient",
    "FleetProvider",
    "MetadataClient",
    "AgentConfig",
    "FleetConfig",
    "ControlPlaneClient",
    "IdleMonitor",
    "ImageBuilder",
    "setup_logging",
    "FleetTemplate",
    "IdleTimerState",
    "InstanceGroup",
    "MachineImage",
    "MonitorState",
    "RegistrationToken",
    "RunnerInstance",
    "FleetProvisioner",
    "RegistrationAgent",
]
