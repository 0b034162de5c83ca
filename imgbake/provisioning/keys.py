"""Temporary SSH key material for key-based builds."""

import logging
import os
import tempfile
from dataclasses import dataclass

import asyncssh

logger = logging.getLogger(__name__)

DEFAULT_KEY_ALGORITHM = "ssh-rsa"
DEFAULT_KEY_SIZE = 2048


@dataclass(frozen=True)
class KeyPair:
    private_key: str
    public_key: str


def generate_key_pair(comment="imgbake") -> KeyPair:
    """Generate a fresh RSA key pair in OpenSSH format."""
    key = asyncssh.generate_private_key(DEFAULT_KEY_ALGORITHM, comment=comment, key_size=DEFAULT_KEY_SIZE)
    return KeyPair(
        private_key=key.export_private_key().decode(),
        public_key=key.export_public_key().decode().strip(),
    )


def load_key_pair(private_key_file) -> KeyPair:
    """Load an existing private key and derive its public half."""
    key = asyncssh.read_private_key(os.path.expanduser(private_key_file))
    return KeyPair(
        private_key=key.export_private_key().decode(),
        public_key=key.export_public_key().decode().strip(),
    )


def write_private_key(private_key) -> str:
    """Write *private_key* to a new 0600 temp file and return its path."""
    fd, path = tempfile.mkstemp(prefix="imgbake-", suffix=".pem")
    with os.fdopen(fd, "w") as f:
        f.write(private_key)
    os.chmod(path, 0o600)
    return path
