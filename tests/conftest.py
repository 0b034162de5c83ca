"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest
import yaml

from imgbake.config.types import BuildConfig, CommunicatorConfig
from imgbake.errors import ProviderError
from imgbake.provisioning.types import InstanceStatus

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the imgbake CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "imgbake.imgbake", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env=env,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture
def write_config(tmp_path):
    """Return a factory that writes a raw build config.yaml and returns its path."""

    def _write(raw):
        config_path = tmp_path / "build.yaml"
        with open(config_path, "w") as f:
            yaml.dump(raw, f)
        return str(config_path)

    return _write


@pytest.fixture
def raw_config():
    """A minimal valid raw config dict, as a user would write it."""
    return {
        "username": "SL123456",
        "api_key": "sl-api-key-0123456789",
        "image_name": "ubuntu-base",
        "base_os_code": "UBUNTU_LATEST",
        "instance_flavor": "B1_1X2X25",
    }


# ── Build fixtures ──────────────────────────────────────────────────


@pytest.fixture
def make_config():
    """Return a factory for BuildConfig with fast polling defaults."""

    def _make(communicator_type="ssh", **overrides):
        comm_overrides = overrides.pop("communicator", {})
        if communicator_type == "winrm":
            comm_overrides.setdefault("winrm_password", "Passw0rd!")
        fields = {
            "username": "SL123456",
            "api_key": "sl-api-key-0123456789",
            "image_name": "ubuntu-base",
            "base_os_code": "UBUNTU_LATEST",
            "instance_name": "imgbake-test",
            "instance_flavor": "B1_1X2X25",
            "state_timeout": 1.0,
            "poll_interval": 0.01,
            "communicator": CommunicatorConfig(type=communicator_type, **comm_overrides),
        }
        fields.update(overrides)
        return BuildConfig(**fields)

    return _make


class FakeClient:
    """In-memory provider client recording every call.

    ``statuses`` and ``public_addresses`` are consumed one per call, the
    last entry repeating forever. Entries that are exceptions are raised.
    A captured ``image_id`` is listed by ``find_image_ids`` after
    ``image_lookup_lag`` lookups, next to ``existing_image_ids``.
    """

    def __init__(self):
        self.calls = []
        self.statuses = [InstanceStatus.ACTIVE]
        self.public_addresses = ["169.50.10.20"]
        self.private_address = "10.120.0.5"
        self.instance_id = "1357924"
        self.image_id = "2468"
        self.existing_image_ids = []
        self.image_lookup_lag = 0
        self.captured = False
        self.key_id = 42
        self.create_error = None
        self.capture_error = None
        self.delete_instance_error = None
        self.on_create = None

    def count(self, method):
        return sum(1 for name, _ in self.calls if name == method)

    def args(self, method):
        return [args for name, args in self.calls if name == method]

    @staticmethod
    def _next(seq):
        value = seq.pop(0) if len(seq) > 1 else seq[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def create_instance(self, spec):
        self.calls.append(("create_instance", (spec,)))
        if self.create_error:
            raise self.create_error
        if self.on_create:
            self.on_create()
        return self.instance_id

    async def get_instance_status(self, instance_id):
        self.calls.append(("get_instance_status", (instance_id,)))
        return self._next(self.statuses)

    async def get_public_address(self, instance_id):
        self.calls.append(("get_public_address", (instance_id,)))
        return self._next(self.public_addresses)

    async def get_private_address(self, instance_id):
        self.calls.append(("get_private_address", (instance_id,)))
        return self.private_address

    async def find_image_ids(self, name):
        self.calls.append(("find_image_ids", (name,)))
        ids = list(self.existing_image_ids)
        if self.captured and self.image_id is not None:
            if self.image_lookup_lag > 0:
                self.image_lookup_lag -= 1
            else:
                ids.append(self.image_id)
        return ids

    async def capture_image(self, instance_id, name, description):
        self.calls.append(("capture_image", (instance_id, name, description)))
        if self.capture_error:
            raise self.capture_error
        self.captured = True

    async def delete_image(self, image_id):
        self.calls.append(("delete_image", (image_id,)))

    async def delete_instance(self, instance_id):
        self.calls.append(("delete_instance", (instance_id,)))
        if self.delete_instance_error:
            raise self.delete_instance_error

    async def create_ssh_key(self, label, public_key):
        self.calls.append(("create_ssh_key", (label, public_key)))
        return self.key_id

    async def delete_ssh_key(self, key_id):
        self.calls.append(("delete_ssh_key", (key_id,)))


class FakeCommunicator:
    def __init__(self, returncodes=None):
        self.commands = []
        self.uploads = []
        self.returncodes = returncodes or {}

    async def run(self, command, timeout=600):
        self.commands.append(command)
        rc = self.returncodes.get(command, 0)
        return rc, "", "boom" if rc else ""

    async def upload(self, local_path, remote_path):
        self.uploads.append((local_path, remote_path))


class FakeConnector:
    def __init__(self, error=None):
        self.hosts = []
        self.error = error
        self.communicator = FakeCommunicator()

    async def connect(self, host, state):
        self.hosts.append(host)
        if self.error:
            raise self.error
        return self.communicator


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def permanent_error():
    return ProviderError("Invalid value provided for 'operatingSystemReferenceCode'", status_code=400)


@pytest.fixture
def fake_communicator():
    return FakeCommunicator()
