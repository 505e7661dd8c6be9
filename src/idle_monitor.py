"""
Idle shutdown monitor for a registered runner instance.

Each tick checks whether a job worker is alive. A live worker resets the
idle counter; otherwise the counter advances by the poll interval. Once the
counter reaches the threshold the runner is deregistered and the host shut
down, exactly once.
"""

import logging
import subprocess
import time
from typing import Callable, List

from control_plane import ControlPlaneClient
from errors import RemovalError, RunnerServiceError
from models import IdleTimerState, MonitorState
from runner_service import RunnerService, is_job_active

logger = logging.getLogger(__name__)

SHUTDOWN_COMMAND: List[str] = ["shutdown", "-h", "now"]


def shutdown_host() -> None:
    subprocess.run(SHUTDOWN_COMMAND, check=False)


class IdleMonitor:
    """Supervises the local CI agent and shuts the host down when idle."""

    def __init__(
        self,
        service: RunnerService,
        control_plane: ControlPlaneClient,
        idle_threshold: int = 600,
        poll_interval: int = 30,
        job_active: Callable[[], bool] = is_job_active,
        shutdown: Callable[[], None] = shutdown_host,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the idle monitor.

        Args:
            service: Local CI agent service wrapper
            control_plane: Client used to fetch a removal token at shutdown
            idle_threshold: Idle seconds before shutdown
            poll_interval: Seconds between job-activity checks
            job_active: Predicate reporting whether a job is running now
            shutdown: Callable that powers off the host
            sleep: Sleep function used between ticks
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.service = service
        self.control_plane = control_plane
        self.idle_threshold = idle_threshold
        self.poll_interval = poll_interval
        self.job_active = job_active
        self.shutdown = shutdown
        self.sleep = sleep
        self.state = IdleTimerState()
        self.shutdowns = 0

    def tick(self) -> IdleTimerState:
        """Evaluate one poll interval and return the resulting state."""
        if self.state.phase is MonitorState.SHUTTING_DOWN:
            return self.state

        if self.job_active():
            if self.state.phase is not MonitorState.ACTIVE:
                logger.info("Job in progress. Resetting idle timer.")
            self.state = IdleTimerState(MonitorState.ACTIVE, 0)
            return self.state

        idle = self.state.idle_seconds + self.poll_interval
        self.state = IdleTimerState(MonitorState.IDLE, idle)
        logger.info(f"Runner idle for {idle}s...")

        if idle >= self.idle_threshold:
            logger.info(f"Idle timeout reached ({self.idle_threshold}s). Shutting down...")
            self.state = IdleTimerState(MonitorState.SHUTTING_DOWN, idle)
            self._deregister_and_shutdown()
        return self.state

    def run(self) -> None:
        """Poll until the shutdown transition fires."""
        logger.info(
            f"Starting idle monitor (timeout {self.idle_threshold}s, "
            f"check every {self.poll_interval}s)"
        )
        while self.state.phase is not MonitorState.SHUTTING_DOWN:
            self.sleep(self.poll_interval)
            self.tick()

    def _deregister_and_shutdown(self) -> None:
        self.shutdowns += 1
        try:
            self.service.stop()
        except RunnerServiceError as e:
            logger.error(f"Failed to stop runner service: {e}")

        # The registration token may have expired long ago; always fetch a new one
        try:
            removal = self.control_plane.create_removal_token()
            self.service.remove(removal.token)
            logger.info("Runner deregistered")
        except (RemovalError, RunnerServiceError) as e:
            logger.warning(f"Deregistration failed, runner may linger as offline: {e}")

        self.shutdown()
