"""Console entry point for the runner fleet CLI."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List

from clients import ComputeRestClient, MetadataClient
from config import AGENT_PACKAGE_METADATA_KEY, AgentConfig, FleetConfig
from control_plane import ControlPlaneClient
from credentials import resolve_credential
from errors import ConfigurationError, FleetError
from idle_monitor import IdleMonitor
from image_builder import ImageBuilder
from log_utils import setup_logging
from provisioner import DEFAULT_STARTUP_SCRIPT, FleetProvisioner
from registration import RegistrationAgent
from runner_service import RunnerService

logger = logging.getLogger(__name__)

DEFAULT_PROVISIONING_SCRIPT = "scripts/setup-image.sh"

LOG_FILES = {
    "build-image": "runner-fleet-image.log",
    "deploy": "runner-fleet-deploy.log",
    "teardown": "runner-fleet-deploy.log",
    "prune-runners": "runner-fleet-prune.log",
    "agent": "runner-agent.log",
}


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Self-hosted CI runner fleet: golden image, deploy, idle shutdown"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    fleet = argparse.ArgumentParser(add_help=False)
    fleet.add_argument("--project", required=True, help="GCP project ID")
    fleet.add_argument("--zone", default="us-central1-a")
    fleet.add_argument("--image-family", default="gh-runner-image")
    fleet.add_argument("--template-name", default="gh-runner-template")
    fleet.add_argument("--group-name", default="gh-runner-mig")
    fleet.add_argument("--base-instance-name", default="gh-runner")
    fleet.add_argument("--operation-timeout", type=int, default=900)
    fleet.add_argument("--poll-interval", type=int, default=10)
    fleet.add_argument("--verbose", action="store_true")

    build = sub.add_parser(
        "build-image", parents=[fleet], help="Bake a new golden runner image"
    )
    build.add_argument(
        "--script",
        default=DEFAULT_PROVISIONING_SCRIPT,
        help="Provisioning script run on the build instance",
    )
    build.add_argument("--version", help="Image version tag (default: UTC timestamp)")
    build.add_argument(
        "--agent-package",
        help="pip requirement for this package installed into the image "
        "(wheel URL or git+https://...@ref); required by the default script",
    )
    build.add_argument("--machine-type", default="e2-standard-4")
    build.add_argument("--provision-timeout", type=int, default=1800)

    deploy = sub.add_parser(
        "deploy", parents=[fleet], help="Replace the runner template and instance group"
    )
    deploy.add_argument("--repo", required=True, help="Repository as owner/name")
    deploy.add_argument("--token", help="GitHub PAT (else $GITHUB_PAT, .env, prompt)")
    deploy.add_argument("--size", type=int, default=2, help="Instance group target size")
    deploy.add_argument("--machine-type", default="e2-standard-4")
    deploy.add_argument("--labels", default="gcp-golden")
    deploy.add_argument("--idle-timeout", type=int, default=600)
    deploy.add_argument("--check-interval", type=int, default=30)
    deploy.add_argument("--startup-script", help="Override the instance boot payload")

    sub.add_parser(
        "teardown", parents=[fleet], help="Delete the instance group and template"
    )

    prune = sub.add_parser(
        "prune-runners", help="Remove offline runner identities left by the fleet"
    )
    prune.add_argument("--repo", required=True, help="Repository as owner/name")
    prune.add_argument("--token", help="GitHub PAT (else $GITHUB_PAT, .env, prompt)")
    prune.add_argument("--prefix", default="gh-runner")
    prune.add_argument("--verbose", action="store_true")

    agent = sub.add_parser(
        "agent", help="On-instance: register the runner and monitor idle time"
    )
    agent.add_argument("--runner-dir", default="/actions-runner")
    agent.add_argument("--verbose", action="store_true")

    return parser


def _fleet_config(args) -> FleetConfig:
    config = FleetConfig.from_args(args)
    problems = config.validate()
    if problems:
        raise ConfigurationError("; ".join(problems))
    return config


def _compute_client(config: FleetConfig) -> ComputeRestClient:
    return ComputeRestClient(
        project_id=config.project_id,
        operation_timeout=config.operation_timeout,
        poll_interval=config.poll_interval,
    )


def _read_file(path: str, what: str) -> str:
    try:
        return Path(path).read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read {what} {path}: {e}") from e


def _build_image(args) -> int:
    config = _fleet_config(args)
    if args.script == DEFAULT_PROVISIONING_SCRIPT and not args.agent_package:
        raise ConfigurationError(
            "--agent-package is required with the default provisioning script"
        )
    script = _read_file(args.script, "provisioning script")
    build_metadata = (
        {AGENT_PACKAGE_METADATA_KEY: args.agent_package} if args.agent_package else {}
    )

    provider = _compute_client(config)
    provider.check_authenticated()

    builder = ImageBuilder(
        provider,
        zone=config.zone,
        builder_instance_name=config.builder_instance_name,
        base_image_family=config.base_image_family,
        base_image_project=config.base_image_project,
        machine_type=config.machine_type,
        disk_size_gb=config.boot_disk_size_gb,
        provision_timeout=config.provision_timeout,
        poll_interval=config.poll_interval,
    )
    image = builder.build_image(
        script, config.image_family, version=args.version, build_metadata=build_metadata
    )
    logger.info(f"Image ready: {image.self_link or image.name}")
    return 0


def _deploy(args) -> int:
    config = _fleet_config(args)
    startup_script = (
        _read_file(args.startup_script, "startup script")
        if args.startup_script
        else DEFAULT_STARTUP_SCRIPT
    )
    provisioner = FleetProvisioner(config, _compute_client(config), startup_script)
    provisioner.deploy()
    return 0


def _teardown(args) -> int:
    config = _fleet_config(args)
    FleetProvisioner(config, _compute_client(config)).teardown()
    return 0


def _prune_runners(args) -> int:
    client = ControlPlaneClient(args.repo, resolve_credential(args.token))
    removed = client.prune_offline_runners(args.prefix)
    logger.info(f"Removed {len(removed)} offline runner(s)")
    return 0


def _agent(args) -> int:
    metadata = MetadataClient()
    config = AgentConfig.from_metadata(metadata, runner_dir=args.runner_dir)
    service = RunnerService(config.runner_dir)

    agent = RegistrationAgent(config, metadata, service)
    agent.register()

    monitor = IdleMonitor(
        service,
        agent.control_plane,
        idle_threshold=config.idle_timeout,
        poll_interval=config.check_interval,
    )
    monitor.run()
    return 0


COMMANDS = {
    "build-image": _build_image,
    "deploy": _deploy,
    "teardown": _teardown,
    "prune-runners": _prune_runners,
    "agent": _agent,
}


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=LOG_FILES[args.command])

    try:
        return COMMANDS[args.command](args)
    except FleetError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
