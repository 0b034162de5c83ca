"""Unit tests for ssh/scp argument building and the SSH communicator."""

import pytest

from imgbake.errors import CommunicatorError
from imgbake.provisioning import ssh_transport
from imgbake.provisioning.ssh_transport import SSHCommunicator, scp_base_args, ssh_base_args


def test_ssh_base_args_default_port():
    args = ssh_base_args("root@169.50.10.20", "/tmp/key.pem", 22)
    assert args[0] == "ssh"
    assert args[-1] == "root@169.50.10.20"
    assert "-p" not in args
    assert args[args.index("-i") + 1] == "/tmp/key.pem"


def test_ssh_base_args_custom_port_without_key():
    args = ssh_base_args("169.50.10.20", None, 2222)
    assert "-i" not in args
    assert args[args.index("-p") + 1] == "2222"


def test_scp_uses_capital_p_for_port():
    args = scp_base_args("/tmp/key.pem", 2222)
    assert args[0] == "scp"
    assert args[args.index("-P") + 1] == "2222"
    assert "-p" not in args


def test_communicator_address():
    assert SSHCommunicator("169.50.10.20", "root").address == "root@169.50.10.20"
    assert SSHCommunicator("169.50.10.20", "").address == "169.50.10.20"


async def test_run_builds_ssh_command(monkeypatch):
    seen = []

    async def fake_exec(args, timeout):
        seen.append((args, timeout))
        return 0, "ok\n", ""

    monkeypatch.setattr(ssh_transport, "_exec", fake_exec)
    comm = SSHCommunicator("169.50.10.20", "root", ssh_key="/tmp/key.pem")

    assert await comm.run("uname -a", timeout=30) == (0, "ok\n", "")
    args, timeout = seen[0]
    assert args[-2:] == ["root@169.50.10.20", "uname -a"]
    assert timeout == 30


async def test_run_timeout_reports_failure(monkeypatch):
    async def fake_exec(args, timeout):
        raise TimeoutError

    monkeypatch.setattr(ssh_transport, "_exec", fake_exec)

    rc, _, _ = await SSHCommunicator("169.50.10.20", "root").run("sleep 999", timeout=1)
    assert rc == 1


async def test_upload_failure_raises(monkeypatch):
    async def fake_exec(args, timeout):
        return 1, "", "Permission denied (publickey)."

    monkeypatch.setattr(ssh_transport, "_exec", fake_exec)

    with pytest.raises(CommunicatorError, match="Permission denied"):
        await SSHCommunicator("169.50.10.20", "root").upload("/tmp/setup.sh", "/tmp/imgbake-0-setup.sh")


async def test_missing_binary_is_communicator_error():
    with pytest.raises(CommunicatorError, match="not found"):
        await ssh_transport._exec(["imgbake-no-such-binary-xyz"], timeout=5)
