"""Shared data types for the provider client."""

import enum
from dataclasses import dataclass
from typing import Protocol


class InstanceStatus(enum.Enum):
    """Coarse lifecycle state of a build instance."""

    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass(frozen=True)
class InstanceSpec:
    """Everything the provider needs to create the build instance.

    Sizing is either ``flavor`` or the explicit ``cpu``/``memory``/``disk_capacity``
    triple; the base image is either ``base_image_id`` or ``base_os_code``.
    """

    hostname: str
    domain: str
    datacenter: str
    flavor: str | None = None
    cpu: int = 0
    memory: int = 0
    disk_capacity: int = 0
    local_disk: bool = False
    network_speed: int = 10
    base_image_id: str | None = None
    base_os_code: str | None = None
    public_vlan_id: int | None = None
    ssh_key_ids: tuple[int, ...] = ()
    public_security_group_ids: tuple[int, ...] = ()


class ProviderClient(Protocol):
    """Instance and image lifecycle operations used by the build steps.

    Every call raises ProviderError on failure; none of them retry.
    """

    async def create_instance(self, spec: InstanceSpec) -> str: ...

    async def get_instance_status(self, instance_id: str) -> InstanceStatus: ...

    async def get_public_address(self, instance_id: str) -> str | None: ...

    async def get_private_address(self, instance_id: str) -> str | None: ...

    async def find_image_ids(self, name: str) -> list[str]: ...

    async def capture_image(self, instance_id: str, name: str, description: str) -> None: ...

    async def delete_image(self, image_id: str) -> None: ...

    async def delete_instance(self, instance_id: str) -> None: ...

    async def create_ssh_key(self, label: str, public_key: str) -> int: ...

    async def delete_ssh_key(self, key_id: int) -> None: ...


class Communicator(Protocol):
    """A connected remote session on the build instance."""

    async def run(self, command: str, timeout: float = 600) -> tuple[int, str, str]: ...

    async def upload(self, local_path: str, remote_path: str) -> None: ...


class Connector(Protocol):
    """Turns a host address into a connected Communicator."""

    async def connect(self, host: str, state) -> Communicator: ...
