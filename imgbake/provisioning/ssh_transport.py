"""SSH transport: run commands and copy files on the build instance via ssh/scp."""

import asyncio
import logging
from dataclasses import dataclass

from imgbake.errors import CommunicatorError

logger = logging.getLogger(__name__)

_COMMON_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "BatchMode=yes",
    "-o", "ServerAliveInterval=60",
    "-o", "ServerAliveCountMax=5",
]


def ssh_base_args(server, ssh_key, ssh_port):
    """Build base SSH arguments."""
    args = ["ssh", *_COMMON_OPTIONS]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(server)
    return args


def scp_base_args(ssh_key, ssh_port):
    """Build base SCP arguments (note: scp takes the port as -P)."""
    args = ["scp", *_COMMON_OPTIONS]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-P", str(ssh_port)]
    return args


async def _exec(args, timeout):
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise CommunicatorError(f"'{args[0]}' not found. Is it installed and on PATH?") from e

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    stdout = stdout_bytes.decode() if stdout_bytes else ""
    stderr = stderr_bytes.decode() if stderr_bytes else ""
    return proc.returncode, stdout, stderr


@dataclass
class SSHCommunicator:
    """Communicator backed by the OpenSSH client binaries."""

    host: str
    username: str
    ssh_key: str | None = None
    ssh_port: int = 22

    @property
    def address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.username}@{self.host}" if self.username else self.host

    async def run(self, command, timeout=600):
        """Run *command* remotely and return (returncode, stdout, stderr).

        Output lines are logged as they are collected.
        """
        args = ssh_base_args(self.address, self.ssh_key, self.ssh_port)
        args.append(command)
        try:
            rc, stdout, stderr = await _exec(args, timeout)
        except TimeoutError:
            logger.error(f"Command timed out after {timeout}s: {command}")
            return 1, "", ""
        for line in stdout.splitlines():
            logger.info(f"    {line}")
        for line in stderr.splitlines():
            logger.debug(f"    {line}")
        return rc, stdout, stderr

    async def upload(self, local_path, remote_path, timeout=300):
        """Copy a local file to the instance via SCP."""
        args = scp_base_args(self.ssh_key, self.ssh_port)
        args += [local_path, f"{self.address}:{remote_path}"]
        try:
            rc, _, stderr = await _exec(args, timeout)
        except TimeoutError:
            raise CommunicatorError(f"SCP timed out after {timeout}s: {local_path} -> {self.address}:{remote_path}") from None
        if rc != 0:
            raise CommunicatorError(f"Failed to SCP {local_path} to {self.address}:{remote_path}: {stderr.strip()}")
