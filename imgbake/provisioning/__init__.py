"""Provider client, communicators and provisioning hooks."""

from imgbake.provisioning.keys import KeyPair, generate_key_pair, load_key_pair, write_private_key
from imgbake.provisioning.provisioner import ScriptProvisioner
from imgbake.provisioning.softlayer import DEFAULT_API_URL, SoftLayerClient
from imgbake.provisioning.ssh import SSHConnector, wait_for_ssh
from imgbake.provisioning.ssh_transport import SSHCommunicator, scp_base_args, ssh_base_args
from imgbake.provisioning.types import (
    Communicator,
    Connector,
    InstanceSpec,
    InstanceStatus,
    ProviderClient,
)

__all__ = [
    "Communicator",
    "Connector",
    "InstanceSpec",
    "InstanceStatus",
    "ProviderClient",
    "SoftLayerClient",
    "DEFAULT_API_URL",
    "KeyPair",
    "generate_key_pair",
    "load_key_pair",
    "write_private_key",
    "ScriptProvisioner",
    "SSHConnector",
    "SSHCommunicator",
    "wait_for_ssh",
    "ssh_base_args",
    "scp_base_args",
]
