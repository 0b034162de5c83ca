"""SSH readiness polling and the SSH connector used by the Connect step."""

import asyncio
import logging
import time

from imgbake.errors import CommunicatorError
from imgbake.provisioning.ssh_transport import SSHCommunicator, ssh_base_args

logger = logging.getLogger(__name__)


async def wait_for_ssh(host, username, ssh_port, ssh_key_path, timeout=120, interval=5):
    """Poll SSH connectivity until success or timeout.

    Returns:
        True if SSH connected, False on timeout.
    """
    address = f"{username}@{host}" if username else host
    deadline = time.monotonic() + timeout
    while True:
        args = ssh_base_args(address, ssh_key_path, ssh_port)
        # Add ConnectTimeout for fast failure during polling
        args.insert(-1, "-o")
        args.insert(-1, "ConnectTimeout=5")
        args.append("true")
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        await proc.wait()
        if proc.returncode == 0:
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    logger.error(f"Timeout after {timeout}s waiting for SSH connectivity to {address}:{ssh_port}")
    return False


class SSHConnector:
    """Connects with the temporary (or configured) private key from build state."""

    def __init__(self, comm_config, interval=5):
        self.comm = comm_config
        self.interval = interval

    async def connect(self, host, state):
        key_path = state.require("ssh_private_key_path")
        logger.info(f"Waiting for SSH on {self.comm.ssh_username}@{host}:{self.comm.ssh_port}...")
        ok = await wait_for_ssh(
            host,
            self.comm.ssh_username,
            self.comm.ssh_port,
            key_path,
            timeout=self.comm.ssh_timeout,
            interval=self.interval,
        )
        if not ok:
            raise CommunicatorError(f"timed out waiting for SSH on {host}:{self.comm.ssh_port}")
        return SSHCommunicator(host=host, username=self.comm.ssh_username, ssh_key=key_path, ssh_port=self.comm.ssh_port)
