"""
In-memory test doubles for the compute provider and control plane.
"""

from typing import Dict, List, Optional, Tuple

from clients import FleetProvider
from errors import AuthenticationError, ProviderAPIError, RegistrationError, RemovalError
from models import FleetTemplate, InstanceGroup, MachineImage, RegistrationToken


class FakeProvider(FleetProvider):
    """Compute provider double that enforces Compute Engine's constraints.

    - creating a resource whose name is taken raises a 409
    - deleting a template still referenced by a group raises a 400
    """

    def __init__(self, authenticated: bool = True, serial_chunks: Optional[List[str]] = None):
        self.authenticated = authenticated
        self.images: Dict[str, Dict] = {}
        self.instances: Dict[str, Dict] = {}
        self.templates: Dict[str, FleetTemplate] = {}
        self.groups: Dict[str, InstanceGroup] = {}
        self.serial_chunks = list(serial_chunks or [])
        self.calls: List[Tuple[str, str]] = []

    def _log(self, op: str, name: str) -> None:
        self.calls.append((op, name))

    def check_authenticated(self) -> None:
        self._log("check_authenticated", "")
        if not self.authenticated:
            raise AuthenticationError("not authenticated")

    def get_image_from_family(self, family, project=None):
        matching = [img for img in self.images.values() if img["family"] == family]
        if not matching:
            return None
        return sorted(matching, key=lambda img: img["name"])[-1]

    def add_image(self, name: str, family: str) -> None:
        self.images[name] = {
            "name": name,
            "family": family,
            "selfLink": f"https://compute/projects/p/global/images/{name}",
        }

    def create_image(self, name, family, source_disk, zone):
        self._log("create_image", name)
        if name in self.images:
            raise ProviderAPIError(f"image {name} exists", status_code=409)
        self.add_image(name, family)
        return MachineImage(
            name=name,
            family=family,
            version=name[len(family) + 1 :],
            source_disk=source_disk,
            self_link=self.images[name]["selfLink"],
        )

    def delete_image(self, name):
        self._log("delete_image", name)
        self.images.pop(name, None)

    def get_instance(self, name, zone):
        return self.instances.get(name)

    def create_instance(self, name, zone, source_image, metadata, machine_type="e2-standard-4", disk_size_gb=100):
        self._log("create_instance", name)
        if name in self.instances:
            raise ProviderAPIError(f"instance {name} exists", status_code=409)
        self.instances[name] = {"name": name, "status": "RUNNING", "metadata": metadata}

    def stop_instance(self, name, zone):
        self._log("stop_instance", name)
        self.instances[name]["status"] = "TERMINATED"

    def delete_instance(self, name, zone):
        self._log("delete_instance", name)
        if name not in self.instances:
            raise ProviderAPIError(f"instance {name} not found", status_code=404)
        del self.instances[name]

    def get_serial_output(self, name, zone, start=0):
        self._log("get_serial_output", name)
        chunk = self.serial_chunks.pop(0) if self.serial_chunks else ""
        return chunk, start + len(chunk)

    def get_template(self, name):
        template = self.templates.get(name)
        return {"name": template.name} if template else None

    def create_template(self, template):
        self._log("create_template", template.name)
        if template.name in self.templates:
            raise ProviderAPIError(f"template {template.name} exists", status_code=409)
        self.templates[template.name] = template

    def delete_template(self, name):
        self._log("delete_template", name)
        if any(g.template_name == name for g in self.groups.values()):
            raise ProviderAPIError(
                f"template {name} is still in use by an instance group", status_code=400
            )
        if name not in self.templates:
            raise ProviderAPIError(f"template {name} not found", status_code=404)
        del self.templates[name]

    def get_group(self, name, zone):
        group = self.groups.get(name)
        return {"name": group.name, "targetSize": group.target_size} if group else None

    def create_group(self, group):
        self._log("create_group", group.name)
        if group.name in self.groups:
            raise ProviderAPIError(f"group {group.name} exists", status_code=409)
        if group.template_name not in self.templates:
            raise ProviderAPIError(f"template {group.template_name} not found", status_code=404)
        self.groups[group.name] = group

    def delete_group(self, name, zone):
        self._log("delete_group", name)
        if name not in self.groups:
            raise ProviderAPIError(f"group {name} not found", status_code=404)
        del self.groups[name]


class FakeControlPlane:
    """Control plane double issuing distinct tokens per request."""

    def __init__(self, registration_token: Optional[str] = "reg-token-1", removal_fails: bool = False):
        self.registration_token = registration_token
        self.removal_fails = removal_fails
        self.issued: List[Tuple[str, str]] = []

    def create_registration_token(self) -> RegistrationToken:
        if not self.registration_token or self.registration_token == "null":
            raise RegistrationError("no token")
        self.issued.append(("registration", self.registration_token))
        return RegistrationToken(token=self.registration_token)

    def create_removal_token(self) -> RegistrationToken:
        if self.removal_fails:
            raise RemovalError("control plane unreachable")
        token = f"remove-token-{len(self.issued) + 1}"
        self.issued.append(("removal", token))
        return RegistrationToken(token=token)
