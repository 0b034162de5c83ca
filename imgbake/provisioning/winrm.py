"""WinRM communicator and connector for Windows build instances.

pywinrm is synchronous; every call is pushed to a worker thread.
"""

import asyncio
import base64
import logging
import time

import winrm

from imgbake.errors import CommunicatorError

logger = logging.getLogger(__name__)

# Keep each encoded chunk well below the cmd.exe command line limit
_UPLOAD_CHUNK = 2000


def winrm_endpoint(host, port, use_ssl):
    scheme = "https" if use_ssl else "http"
    return f"{scheme}://{host}:{port}/wsman"


class WinRMCommunicator:
    """Communicator backed by a pywinrm Session."""

    def __init__(self, session):
        self.session = session

    async def run(self, command, timeout=600):
        """Run a PowerShell *command* and return (returncode, stdout, stderr)."""
        try:
            resp = await asyncio.wait_for(asyncio.to_thread(self.session.run_ps, command), timeout=timeout)
        except TimeoutError:
            logger.error(f"Command timed out after {timeout}s: {command}")
            return 1, "", ""
        stdout = resp.std_out.decode(errors="replace") if resp.std_out else ""
        stderr = resp.std_err.decode(errors="replace") if resp.std_err else ""
        for line in stdout.splitlines():
            logger.info(f"    {line}")
        return resp.status_code, stdout, stderr

    async def upload(self, local_path, remote_path):
        """Copy a local file by streaming it base64-encoded through PowerShell."""
        with open(local_path, "rb") as f:
            encoded = base64.b64encode(f.read()).decode()

        staging = f"{remote_path}.b64"
        await self._checked(f"Set-Content -Path '{staging}' -Value $null")
        for i in range(0, len(encoded), _UPLOAD_CHUNK):
            chunk = encoded[i : i + _UPLOAD_CHUNK]
            await self._checked(f"Add-Content -Path '{staging}' -Value '{chunk}' -NoNewline")
        await self._checked(
            f"$b = [Convert]::FromBase64String((Get-Content -Raw '{staging}'));"
            f" [IO.File]::WriteAllBytes('{remote_path}', $b); Remove-Item '{staging}'"
        )

    async def _checked(self, command):
        rc, _, stderr = await self.run(command)
        if rc != 0:
            raise CommunicatorError(f"WinRM upload step failed: {stderr.strip()}")


class WinRMConnector:
    """Connects with the configured username and password."""

    def __init__(self, comm_config, interval=5):
        self.comm = comm_config
        self.interval = interval

    def _session(self, host):
        return winrm.Session(
            winrm_endpoint(host, self.comm.winrm_port, self.comm.winrm_use_ssl),
            auth=(self.comm.winrm_username, self.comm.winrm_password),
            transport="ntlm",
            server_cert_validation="ignore" if self.comm.winrm_insecure else "validate",
        )

    async def connect(self, host, state):
        session = self._session(host)
        logger.info(f"Waiting for WinRM on {host}:{self.comm.winrm_port}...")
        deadline = time.monotonic() + self.comm.winrm_timeout
        while True:
            try:
                resp = await asyncio.to_thread(session.run_cmd, "hostname")
                if resp.status_code == 0:
                    return WinRMCommunicator(session)
                logger.debug(f"WinRM check returned {resp.status_code}")
            except Exception as e:  # pywinrm raises transport-specific errors while the host boots
                logger.debug(f"WinRM not ready: {e}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CommunicatorError(f"timed out waiting for WinRM on {host}:{self.comm.winrm_port}")
            await asyncio.sleep(min(self.interval, remaining))
