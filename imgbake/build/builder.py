"""Builder facade: pick the step sequence, run it, turn the outcome into an Artifact."""

import asyncio
import logging

from imgbake.build.artifact import Artifact
from imgbake.build.runner import StepRunner
from imgbake.build.state import BuildState
from imgbake.build.steps import (
    CaptureImage,
    Connect,
    CreateInstance,
    CreateTemporaryKey,
    GrabPublicIP,
    Provision,
    WaitForInstance,
    comm_host,
)
from imgbake.config.types import COMMUNICATOR_SSH, COMMUNICATOR_WINRM
from imgbake.errors import BuildCancelledError, BuildInvariantError, ConfigError
from imgbake.provisioning.provisioner import ScriptProvisioner
from imgbake.provisioning.softlayer import SoftLayerClient
from imgbake.provisioning.ssh import SSHConnector
from imgbake.provisioning.winrm import WinRMConnector
from imgbake.redact import register_secret

logger = logging.getLogger(__name__)


def default_connector(comm_config):
    """Connector for the configured communicator type."""
    if comm_config.type == COMMUNICATOR_SSH:
        return SSHConnector(comm_config)
    if comm_config.type == COMMUNICATOR_WINRM:
        return WinRMConnector(comm_config)
    raise ConfigError([f"Unknown communicator '{comm_config.type}'"])


def select_sequence(config, connector):
    """Return the ordered steps for the configured communicator.

    Raises ConfigError for an unsupported communicator type.
    """
    comm = config.communicator
    if comm.type == COMMUNICATOR_SSH:
        return [
            CreateTemporaryKey(private_key_file=comm.ssh_private_key_file),
            CreateInstance(),
            WaitForInstance(),
            GrabPublicIP(),
            Connect(connector, host=comm_host),
            Provision(),
            CaptureImage(),
        ]
    if comm.type == COMMUNICATOR_WINRM:
        return [
            CreateInstance(),
            WaitForInstance(),
            GrabPublicIP(),
            Connect(connector, host=comm_host),
            # Windows instances report ACTIVE before setup is really done
            WaitForInstance(),
            Provision(),
            CaptureImage(),
        ]
    raise ConfigError([f"Unknown communicator '{comm.type}'"])


class Builder:
    """Runs one image build from a prepared BuildConfig.

    Example:
        >>> builder = Builder(prepare_config(load_config("build.yaml")))
        >>> artifact = await builder.run()
        >>> print(artifact.image_id)

    *client*, *connector* and *hook* default to the SoftLayer client, the
    connector for the configured communicator, and the configured
    provisioners respectively.
    """

    def __init__(self, config, client=None, connector=None, hook=None):
        self.config = config
        self.client = client
        self.connector = connector
        self.hook = hook
        if hook is None and config.provisioners:
            self.hook = ScriptProvisioner(config.provisioners, config.communicator.type)
        self.runner = None
        self.state = None
        self._cancel = asyncio.Event()

        register_secret(config.api_key)
        register_secret(config.communicator.winrm_password)

    def cancel(self):
        """Ask the running build to stop before its next step.

        A provider call already in flight is not interrupted; cleanup of the
        steps that ran still happens.
        """
        logger.info("Cancelling the build...")
        self._cancel.set()

    async def run(self, ui=None) -> Artifact:
        """Run the build.

        Returns:
            The Artifact for the captured image.

        Raises:
            The first error that stopped the build, BuildCancelledError after
            cancel(), or BuildInvariantError if the steps ended without either
            an error or an image.
        """
        config = self.config
        connector = self.connector or default_connector(config.communicator)
        steps = select_sequence(config, connector)

        client = self.client or SoftLayerClient(config.username, config.api_key, config.api_url)
        state = BuildState(config=config, client=client, hook=self.hook)
        if ui is not None:
            state.ui = ui
        self.state = state

        self.runner = StepRunner(steps)
        await self.runner.run(state, self._cancel)

        if state.error is not None:
            raise state.error
        if state.cancelled:
            raise BuildCancelledError("build cancelled")
        if state.image_id is None:
            logger.error("Failed to find image_id in build state. Bug?")
            raise BuildInvariantError("build finished without an error and without an image id")

        return Artifact(
            image_name=config.image_name,
            image_id=state.image_id,
            datacenter_name=config.datacenter_name,
            client=client,
        )
