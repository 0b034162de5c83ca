"""Build artifact: reference to a captured image."""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

BUILDER_ID = "imgbake.softlayer"


@dataclass(frozen=True)
class Artifact:
    """A standard image captured by a successful build.

    Owned by the caller once returned; ``destroy()`` deletes the image.
    """

    image_name: str
    image_id: str
    datacenter_name: str
    client: Any = field(repr=False, compare=False)

    builder_id = BUILDER_ID

    @property
    def id(self) -> str:
        return f"{self.datacenter_name}::{self.image_id}"

    def __str__(self):
        return f"{self.image_name} ({self.image_id}) in {self.datacenter_name}"

    def to_dict(self) -> dict:
        return {
            "builder_id": self.builder_id,
            "image_name": self.image_name,
            "image_id": self.image_id,
            "datacenter_name": self.datacenter_name,
        }

    async def destroy(self) -> None:
        """Delete the captured image."""
        logger.info(f"Destroying image {self}")
        await self.client.delete_image(self.image_id)
