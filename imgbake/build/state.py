"""Shared build state passed between steps."""

import logging
from dataclasses import dataclass, field
from typing import Any

from imgbake.config.types import BuildConfig
from imgbake.errors import NotYetSetError


@dataclass
class BuildState:
    """Typed bag of everything the steps of one build share.

    ``config``, ``client``, ``ui`` and ``hook`` are set up front by the
    builder. The remaining fields are results produced by individual steps
    and stay None until then; read them through ``require()`` so a step
    running out of order fails loudly instead of seeing None.

    Only the active step mutates the state.
    """

    config: BuildConfig
    client: Any
    ui: logging.Logger = field(default_factory=lambda: logging.getLogger("imgbake.ui"))
    hook: Any = None

    # CreateTemporaryKey
    ssh_private_key: str | None = None
    ssh_public_key: str | None = None
    ssh_private_key_path: str | None = None
    ssh_key_id: int | None = None
    # CreateInstance
    instance_id: str | None = None
    # GrabPublicIP
    public_ip: str | None = None
    private_ip: str | None = None
    # Connect
    communicator: Any = None
    # CaptureImage
    image_id: str | None = None

    error: BaseException | None = None
    cancelled: bool = False

    def require(self, name):
        """Return a step result, raising NotYetSetError if no step produced it yet."""
        value = getattr(self, name)
        if value is None:
            raise NotYetSetError(f"'{name}' has not been set in build state")
        return value

    def halt(self, error):
        """Record the terminal error. The first error wins."""
        if self.error is None:
            self.error = error

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.cancelled and self.image_id is not None
