"""Default provisioning hook: run configured inline commands and scripts."""

import logging
import os

from imgbake.config.types import COMMUNICATOR_WINRM
from imgbake.errors import ProvisionError

logger = logging.getLogger(__name__)

REMOTE_SCRIPT_DIR = "/tmp"
REMOTE_SCRIPT_DIR_WINDOWS = "C:\\Windows\\Temp"


class ScriptProvisioner:
    """Runs each configured provisioner in order over the communicator.

    Inline commands are executed one by one; scripts are uploaded first and
    then executed. The first non-zero exit code raises ProvisionError.
    """

    def __init__(self, provisioners, communicator_type, timeout=3600):
        self.provisioners = provisioners
        self.windows = communicator_type == COMMUNICATOR_WINRM
        self.timeout = timeout

    async def __call__(self, communicator):
        for i, prov in enumerate(self.provisioners):
            logger.info(f"Provisioning with {prov.description}...")
            if prov.script:
                await self._run_script(communicator, i, prov.script)
            else:
                for command in prov.inline:
                    await self._run(communicator, command)

    def _remote_script_path(self, index, local_path):
        name = f"imgbake-{index}-{os.path.basename(local_path)}"
        if self.windows:
            return f"{REMOTE_SCRIPT_DIR_WINDOWS}\\{name}"
        return f"{REMOTE_SCRIPT_DIR}/{name}"

    async def _run_script(self, communicator, index, local_path):
        remote_path = self._remote_script_path(index, local_path)
        await communicator.upload(local_path, remote_path)
        if self.windows:
            await self._run(communicator, f"& '{remote_path}'")
        else:
            await self._run(communicator, f"chmod +x {remote_path} && {remote_path}")

    async def _run(self, communicator, command):
        rc, _, stderr = await communicator.run(command, timeout=self.timeout)
        if rc != 0:
            detail = f": {stderr.strip()}" if stderr.strip() else ""
            raise ProvisionError(f"command exited with {rc}: {command}{detail}")
