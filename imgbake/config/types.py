"""Build configuration dataclass types."""

from dataclasses import dataclass, field

COMMUNICATOR_SSH = "ssh"
COMMUNICATOR_WINRM = "winrm"
COMMUNICATOR_TYPES = (COMMUNICATOR_SSH, COMMUNICATOR_WINRM)

# Flex images are not supported by the capture step
IMAGE_TYPE_STANDARD = "standard"


@dataclass(frozen=True)
class CommunicatorConfig:
    """How to reach the build instance once it is running."""

    type: str = COMMUNICATOR_SSH
    ssh_username: str = "root"
    ssh_port: int = 22
    ssh_private_key_file: str | None = None
    ssh_timeout: float = 300.0
    winrm_username: str = "Administrator"
    winrm_password: str | None = None
    winrm_port: int = 5985
    winrm_use_ssl: bool = False
    winrm_insecure: bool = False
    winrm_timeout: float = 1800.0
    use_private_ip: bool = False


@dataclass(frozen=True)
class ProvisionerConfig:
    """One unit of provisioning work: inline commands or a local script."""

    inline: tuple[str, ...] = ()
    script: str | None = None

    @property
    def description(self) -> str:
        if self.script:
            return f"script {self.script}"
        return f"{len(self.inline)} inline command(s)"


@dataclass(frozen=True)
class BuildConfig:
    """Validated configuration for a single image build."""

    username: str
    api_key: str
    image_name: str
    api_url: str = "https://api.softlayer.com/rest/v3.1"
    image_description: str = "Instance snapshot. Generated by imgbake"
    image_type: str = IMAGE_TYPE_STANDARD
    base_image_id: str | None = None
    base_os_code: str | None = None

    instance_name: str = ""
    instance_domain: str = "defaultdomain.com"
    instance_flavor: str | None = None
    instance_cpu: int = 0
    instance_memory: int = 0
    instance_disk_capacity: int = 0
    instance_local_disk_flag: bool = False
    instance_network_speed: int = 10
    datacenter_name: str = "ams01"
    public_vlan_id: int | None = None
    provisioning_ssh_key_id: int | None = None
    public_security_groups: tuple[int, ...] = ()

    state_timeout: float = 600.0
    poll_interval: float = 10.0
    delete_instance_after_capture: bool = False

    communicator: CommunicatorConfig = field(default_factory=CommunicatorConfig)
    provisioners: tuple[ProvisionerConfig, ...] = ()

    @property
    def by_flavor(self) -> bool:
        """True when sizing comes from a named flavor rather than cpu/memory/disk."""
        return not (self.instance_cpu > 0 or self.instance_memory > 0 or self.instance_disk_capacity > 0)
