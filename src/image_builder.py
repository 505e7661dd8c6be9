"""
Golden image builder.

Boots a disposable instance from a base OS image, runs the provisioning
script on first boot, snapshots the boot disk into a new image in the target
family and deletes the build instance whether or not the build succeeded.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Optional

from clients import FleetProvider
from errors import (
    OperationError,
    ProviderAPIError,
    ProvisioningError,
    ProvisioningTimeoutError,
)
from models import MachineImage

logger = logging.getLogger(__name__)

READY_SENTINEL = "RUNNER-IMAGE-PROVISION: READY"
FAILED_SENTINEL = "RUNNER-IMAGE-PROVISION: FAILED"

_WRAPPER = """#!/bin/bash
report() {{ echo "$1"; echo "$1" > /dev/ttyS0 2>/dev/null || true; }}
cat > /tmp/runner-provision.sh <<'RUNNER_PROVISION_EOF'
{script}
RUNNER_PROVISION_EOF
if bash /tmp/runner-provision.sh; then
  report "{ready}"
else
  report "{failed} exit=$?"
fi
"""


def wrap_provisioning_script(script: str) -> str:
    """Wrap a provisioning script so it reports completion on the serial console."""
    return _WRAPPER.format(
        script=script.rstrip("\n"), ready=READY_SENTINEL, failed=FAILED_SENTINEL
    )


class ImageBuilder:
    """Builds versioned machine images for the runner fleet."""

    def __init__(
        self,
        provider: FleetProvider,
        zone: str,
        builder_instance_name: str = "gh-runner-builder",
        base_image_family: str = "ubuntu-2204-lts",
        base_image_project: str = "ubuntu-os-cloud",
        machine_type: str = "e2-standard-4",
        disk_size_gb: int = 100,
        provision_timeout: int = 1800,
        poll_interval: int = 10,
    ):
        """
        Initialize the image builder.

        Args:
            provider: Compute fleet provider
            zone: Zone to run the build instance in
            builder_instance_name: Name of the temporary build instance
            base_image_family: OS image family to start from
            base_image_project: Project that owns the base image family
            machine_type: Machine type of the build instance
            disk_size_gb: Boot disk size of the build instance (and the image)
            provision_timeout: Maximum wait for the completion sentinel (seconds)
            poll_interval: Interval between serial console reads (seconds)
        """
        self.provider = provider
        self.zone = zone
        self.builder_instance_name = builder_instance_name
        self.base_image_family = base_image_family
        self.base_image_project = base_image_project
        self.machine_type = machine_type
        self.disk_size_gb = disk_size_gb
        self.provision_timeout = provision_timeout
        self.poll_interval = poll_interval

    def build_image(
        self,
        provisioning_script: str,
        image_family: str,
        version: Optional[str] = None,
        build_metadata: Optional[Dict[str, str]] = None,
    ) -> MachineImage:
        """
        Build a new image in image_family from provisioning_script.

        Args:
            provisioning_script: Shell script run as root on first boot
            image_family: Family the new image is published to
            version: Version tag; defaults to a UTC timestamp
            build_metadata: Extra metadata attributes the script can read on the
                build instance

        Returns:
            The created MachineImage

        Raises:
            ProvisioningError: If the script reported a failure
            ProvisioningTimeoutError: If completion was not observed in time
            ProviderAPIError / OperationError: If a provider call failed
        """
        version = version or datetime.now(timezone.utc).strftime("v%Y%m%d-%H%M%S")
        image_name = f"{image_family}-{version}"
        name = self.builder_instance_name

        logger.info("=" * 70)
        logger.info(f"Building image {image_name} (family {image_family})")
        logger.info(
            f"Base image: {self.base_image_project}/{self.base_image_family}, "
            f"build instance: {name} in {self.zone}"
        )
        logger.info("=" * 70)

        # A crashed previous build may have left the instance behind
        self._delete_builder()

        metadata = dict(build_metadata or {})
        metadata["startup-script"] = wrap_provisioning_script(provisioning_script)

        try:
            base = f"projects/{self.base_image_project}/global/images/family/{self.base_image_family}"
            self.provider.create_instance(
                name,
                self.zone,
                source_image=base,
                metadata=metadata,
                machine_type=self.machine_type,
                disk_size_gb=self.disk_size_gb,
            )
            logger.info(f"Build instance {name} created, waiting for provisioning...")

            self._wait_for_provisioning()

            logger.info(f"Stopping {name} before snapshot")
            self.provider.stop_instance(name, self.zone)

            logger.info(f"Creating image {image_name} from disk {name}")
            try:
                image = self.provider.create_image(
                    image_name, image_family, source_disk=name, zone=self.zone
                )
            except OperationError:
                self._delete_failed_image(image_name)
                raise

            logger.info(f"✓ Image {image.name} created in family {image_family}")
            return image
        finally:
            self._delete_builder()

    def _wait_for_provisioning(self) -> None:
        """Poll the serial console until a sentinel appears or the timeout expires."""
        name = self.builder_instance_name
        start = time.time()
        offset = 0
        buffered = ""

        while True:
            contents, offset = self.provider.get_serial_output(name, self.zone, offset)
            buffered = (buffered + contents)[-4096:]

            if FAILED_SENTINEL in buffered:
                tail = buffered[buffered.index(FAILED_SENTINEL):].splitlines()[0]
                raise ProvisioningError(f"Provisioning script failed on {name}: {tail}")
            if READY_SENTINEL in buffered:
                logger.info(
                    f"✓ Provisioning completed on {name} after {time.time() - start:.0f}s"
                )
                return

            elapsed = time.time() - start
            if elapsed >= self.provision_timeout:
                raise ProvisioningTimeoutError(
                    f"Provisioning sentinel not seen on {name} within {self.provision_timeout}s"
                )
            logger.debug(f"  {name}: still provisioning ({elapsed:.0f}s elapsed)")
            time.sleep(self.poll_interval)

    def _delete_builder(self) -> None:
        """Best-effort delete of the build instance."""
        name = self.builder_instance_name
        try:
            if self.provider.get_instance(name, self.zone) is None:
                return
            logger.info(f"Deleting build instance {name}")
            self.provider.delete_instance(name, self.zone)
        except ProviderAPIError as e:
            if not e.is_not_found:
                logger.error(f"Failed to delete build instance {name}: {e}")
        except (OperationError, ProvisioningTimeoutError) as e:
            logger.error(f"Failed to delete build instance {name}: {e}")

    def _delete_failed_image(self, image_name: str) -> None:
        try:
            self.provider.delete_image(image_name)
        except (ProviderAPIError, OperationError, ProvisioningTimeoutError) as e:
            logger.warning(f"Could not remove failed image {image_name}: {e}")
