"""
Fleet provisioning for the self-hosted runner fleet.

Deploys are replace-not-patch: any same-named instance group and template
are deleted (group first, it references the template) and recreated from
the latest image in the family. Nothing is remembered between runs; every
deploy re-reads resource existence from the provider.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from clients import FleetProvider
from config import (
    CHECK_INTERVAL_METADATA_KEY,
    CREDENTIAL_METADATA_KEY,
    IDLE_TIMEOUT_METADATA_KEY,
    LABELS_METADATA_KEY,
    REPOSITORY_METADATA_KEY,
    FleetConfig,
)
from credentials import resolve_credential
from errors import ConfigurationError, ProviderAPIError
from models import FleetTemplate, InstanceGroup

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_SCRIPT = """#!/bin/bash
set -e
exec runner-fleet agent --runner-dir /actions-runner
"""


class FleetProvisioner:
    """Creates, replaces and tears down the runner template and instance group."""

    def __init__(
        self,
        config: FleetConfig,
        provider: FleetProvider,
        startup_script: str = DEFAULT_STARTUP_SCRIPT,
        credential_resolver: Callable[..., str] = resolve_credential,
    ):
        """
        Initialize the fleet provisioner.

        Args:
            config: Fleet configuration
            provider: Compute fleet provider
            startup_script: Boot payload run on every fleet instance
            credential_resolver: Callable returning the registration credential
        """
        self.config = config
        self.provider = provider
        self.startup_script = startup_script
        self.credential_resolver = credential_resolver

        self.stats = {
            "groups_deleted": 0,
            "templates_deleted": 0,
            "templates_created": 0,
            "groups_created": 0,
        }

    def deploy(self) -> InstanceGroup:
        """
        Replace the fleet template and instance group. Safe to re-run.

        Returns:
            The InstanceGroup that was created

        Raises:
            ConfigurationError: Credential or repository missing
            AuthenticationError: Provider session not authenticated
            ProviderAPIError / OperationError: Provider call failed
        """
        cfg = self.config
        credential = self.credential_resolver(cfg.credential)
        if not credential:
            raise ConfigurationError("Registration credential is empty")
        if not cfg.repository:
            raise ConfigurationError("Repository (owner/name) is required")

        self.provider.check_authenticated()

        logger.info("=" * 70)
        logger.info("Self-hosted runner fleet deploy")
        logger.info("=" * 70)
        logger.info(f"Project: {cfg.project_id}")
        logger.info(f"Zone: {cfg.zone}")
        logger.info(f"Repository: {cfg.repository}")
        logger.info(f"Template: {cfg.template_name}")
        logger.info(f"Instance group: {cfg.group_name} (size {cfg.target_size})")
        logger.info(f"Image family: {cfg.image_family}")
        logger.info(f"Idle timeout: {cfg.idle_timeout}s (check every {cfg.check_interval}s)")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        # Must resolve before any delete: a missing family leaves the fleet as is
        image = self.provider.get_image_from_family(cfg.image_family)
        if image is None:
            raise ConfigurationError(
                f"No image found in family '{cfg.image_family}'. Run build-image first."
            )
        source_image = image.get("selfLink") or (
            f"projects/{cfg.project_id}/global/images/family/{cfg.image_family}"
        )
        logger.info(f"Using image {image.get('name', source_image)}")
        template = self._build_template(source_image, credential)

        logger.info("Cleaning up existing resources...")
        self._remove_existing()

        logger.info(f"Creating instance template {template.name}...")
        self.provider.create_template(template)
        self.stats["templates_created"] += 1

        group = InstanceGroup(
            name=cfg.group_name,
            zone=cfg.zone,
            template_name=cfg.template_name,
            target_size=cfg.target_size,
            base_instance_name=cfg.base_instance_name,
        )
        logger.info(f"Creating instance group {group.name}...")
        self.provider.create_group(group)
        self.stats["groups_created"] += 1

        logger.info("✓ Deployment complete")
        return group

    def teardown(self) -> None:
        """Delete the instance group and template without recreating them."""
        self.provider.check_authenticated()
        logger.info(f"Tearing down {self.config.group_name} / {self.config.template_name}")
        self._remove_existing()
        logger.info("✓ Teardown complete")

    def _remove_existing(self) -> None:
        # The group references the template, so it must be gone first
        cfg = self.config
        if self._delete_if_exists(
            "instance group",
            cfg.group_name,
            lambda: self.provider.get_group(cfg.group_name, cfg.zone),
            lambda: self.provider.delete_group(cfg.group_name, cfg.zone),
        ):
            self.stats["groups_deleted"] += 1

        if self._delete_if_exists(
            "instance template",
            cfg.template_name,
            lambda: self.provider.get_template(cfg.template_name),
            lambda: self.provider.delete_template(cfg.template_name),
        ):
            self.stats["templates_deleted"] += 1

    @staticmethod
    def _delete_if_exists(
        kind: str,
        name: str,
        describe: Callable[[], Optional[Dict]],
        delete: Callable[[], None],
    ) -> bool:
        """Delete a resource if present. Returns True if a delete happened."""
        if describe() is None:
            logger.debug(f"No existing {kind} {name}")
            return False

        logger.info(f"Deleting existing {kind}: {name}")
        start = time.time()
        try:
            delete()
        except ProviderAPIError as e:
            if e.is_not_found:
                logger.info(f"{kind} {name} already absent")
                return False
            raise
        logger.info(f"Deleted {kind} {name} in {time.time() - start:.1f}s")
        return True

    def _build_template(self, source_image: str, credential: str) -> FleetTemplate:
        cfg = self.config
        return FleetTemplate(
            name=cfg.template_name,
            machine_type=cfg.machine_type,
            source_image=source_image,
            boot_disk_size_gb=cfg.boot_disk_size_gb,
            boot_disk_type=cfg.boot_disk_type,
            network_tags=list(cfg.network_tags),
            scopes=list(cfg.scopes),
            metadata={
                "startup-script": self.startup_script,
                CREDENTIAL_METADATA_KEY: credential,
                REPOSITORY_METADATA_KEY: cfg.repository,
                LABELS_METADATA_KEY: ",".join(cfg.runner_labels),
                IDLE_TIMEOUT_METADATA_KEY: str(cfg.idle_timeout),
                CHECK_INTERVAL_METADATA_KEY: str(cfg.check_interval),
            },
        )
