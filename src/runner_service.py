"""
Wrapper around the local GitHub Actions runner installation scripts.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional

import psutil

from errors import RunnerServiceError

logger = logging.getLogger(__name__)

# Job-execution subprocess spawned by the runner listener
WORKER_PROCESS_NAME = "Runner.Worker"

# Written by config.sh and svc.sh install respectively
RUNNER_STATE_FILE = ".runner"
SERVICE_STATE_FILE = ".service"


class RunnerService:
    """Configures and controls the CI agent installed in runner_dir."""

    def __init__(self, runner_dir: str = "/actions-runner", timeout_s: int = 300):
        self.runner_dir = Path(runner_dir)
        self.timeout_s = timeout_s

    def _run(self, args: List[str], redact: Optional[str] = None) -> str:
        shown = " ".join("***" if redact and a == redact else a for a in args)
        logger.debug(f"Running: {shown}")

        env = dict(os.environ, RUNNER_ALLOW_RUNASROOT="1")
        try:
            result = subprocess.run(
                args,
                cwd=self.runner_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RunnerServiceError(f"{shown} failed: {e}") from e

        if result.returncode != 0:
            raise RunnerServiceError(
                f"{shown} exited {result.returncode}: {result.stderr.strip()[-500:]}"
            )
        return result.stdout

    def is_configured(self) -> bool:
        """Return True if a local registration from a previous boot is present."""
        return (self.runner_dir / RUNNER_STATE_FILE).exists()

    def is_installed(self) -> bool:
        return (self.runner_dir / SERVICE_STATE_FILE).exists()

    def configure(self, url: str, token: str, name: str, labels: List[str]) -> None:
        """Register the local agent with the control plane."""
        logger.info(f"Configuring runner {name} with labels {','.join(labels)}")
        self._run(
            [
                "./config.sh",
                "--url", url,
                "--token", token,
                "--unattended",
                "--name", name,
                "--replace",
                "--labels", ",".join(labels),
            ],
            redact=token,
        )

    def install(self) -> None:
        """Install the agent as a system service."""
        logger.info("Installing runner as service...")
        self._run(["./svc.sh", "install"])

    def start(self) -> None:
        logger.info("Starting runner service")
        self._run(["./svc.sh", "start"])

    def stop(self) -> None:
        logger.info("Stopping runner service")
        self._run(["./svc.sh", "stop"])

    def remove(self, removal_token: str) -> None:
        """Deregister the local agent using a removal token."""
        logger.info("Removing runner registration")
        self._run(["./config.sh", "remove", "--token", removal_token], redact=removal_token)


def is_job_active() -> bool:
    """Return True if a job-execution worker process is currently alive."""
    for proc in psutil.process_iter(["name", "cmdline"]):
        try:
            name = proc.info.get("name") or ""
            cmdline = " ".join(proc.info.get("cmdline") or [])
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if WORKER_PROCESS_NAME in name or WORKER_PROCESS_NAME in cmdline:
            return True
    return False
