"""Unit tests for the script provisioner hook."""

import pytest

from imgbake.config.types import ProvisionerConfig
from imgbake.errors import ProvisionError
from imgbake.provisioning.provisioner import ScriptProvisioner


async def test_inline_commands_run_in_order(fake_communicator):
    hook = ScriptProvisioner(
        (ProvisionerConfig(inline=("apt-get update", "apt-get install -y nginx")), ProvisionerConfig(inline=("uptime",))),
        "ssh",
    )

    await hook(fake_communicator)

    assert fake_communicator.commands == ["apt-get update", "apt-get install -y nginx", "uptime"]


async def test_script_uploaded_then_executed(fake_communicator, tmp_path):
    script = tmp_path / "setup.sh"
    script.write_text("#!/bin/sh\necho hi\n")

    await ScriptProvisioner((ProvisionerConfig(script=str(script)),), "ssh")(fake_communicator)

    assert fake_communicator.uploads == [(str(script), "/tmp/imgbake-0-setup.sh")]
    assert fake_communicator.commands == ["chmod +x /tmp/imgbake-0-setup.sh && /tmp/imgbake-0-setup.sh"]


async def test_windows_script_path(fake_communicator, tmp_path):
    script = tmp_path / "setup.ps1"
    script.write_text("Write-Host hi\n")

    await ScriptProvisioner((ProvisionerConfig(script=str(script)),), "winrm")(fake_communicator)

    assert fake_communicator.uploads == [(str(script), "C:\\Windows\\Temp\\imgbake-0-setup.ps1")]
    assert fake_communicator.commands == ["& 'C:\\Windows\\Temp\\imgbake-0-setup.ps1'"]


async def test_nonzero_exit_stops_provisioning(fake_communicator):
    fake_communicator.returncodes = {"false": 1}
    hook = ScriptProvisioner((ProvisionerConfig(inline=("true", "false", "echo never")),), "ssh")

    with pytest.raises(ProvisionError, match="exited with 1: false: boom"):
        await hook(fake_communicator)

    assert fake_communicator.commands == ["true", "false"]
