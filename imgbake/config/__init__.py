"""Build configuration: YAML loading, defaults, validation, dataclass types."""

from imgbake.config.loader import load_config, parse_duration, prepare_config
from imgbake.config.types import (
    COMMUNICATOR_SSH,
    COMMUNICATOR_TYPES,
    COMMUNICATOR_WINRM,
    IMAGE_TYPE_STANDARD,
    BuildConfig,
    CommunicatorConfig,
    ProvisionerConfig,
)

__all__ = [
    "BuildConfig",
    "CommunicatorConfig",
    "ProvisionerConfig",
    "COMMUNICATOR_SSH",
    "COMMUNICATOR_WINRM",
    "COMMUNICATOR_TYPES",
    "IMAGE_TYPE_STANDARD",
    "load_config",
    "parse_duration",
    "prepare_config",
]
