"""Build configuration loading, defaults and validation."""

import logging
import os
import re
import time

import yaml

from imgbake.config.types import (
    COMMUNICATOR_SSH,
    COMMUNICATOR_TYPES,
    COMMUNICATOR_WINRM,
    IMAGE_TYPE_STANDARD,
    BuildConfig,
    CommunicatorConfig,
    ProvisionerConfig,
)
from imgbake.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_STATE_TIMEOUT = "10m"
DEFAULT_SSH_TIMEOUT = "5m"
DEFAULT_WINRM_TIMEOUT = "30m"

_BUILD_KEYS = {
    "username",
    "api_key",
    "api_url",
    "image_name",
    "image_description",
    "image_type",
    "base_image_id",
    "base_os_code",
    "instance_name",
    "instance_domain",
    "instance_flavor",
    "instance_cpu",
    "instance_memory",
    "instance_disk_capacity",
    "instance_local_disk_flag",
    "instance_network_speed",
    "datacenter_name",
    "public_vlan_id",
    "provisioning_ssh_key_id",
    "public_security_groups",
    "instance_state_timeout",
    "poll_interval",
    "delete_instance_after_capture",
    "provisioners",
}

_COMMUNICATOR_KEYS = {
    "communicator",
    "ssh_username",
    "ssh_port",
    "ssh_private_key_file",
    "ssh_timeout",
    "winrm_username",
    "winrm_password",
    "winrm_port",
    "winrm_use_ssl",
    "winrm_insecure",
    "winrm_timeout",
    "use_private_ip",
}

_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def parse_duration(value) -> float:
    """Parse a Go-style duration ("500ms", "45s", "10m", "1h30m") into seconds.

    Plain numbers are taken as seconds. Raises ValueError on malformed input.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        raise ValueError("empty duration")
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {text!r}")
    return total


def load_config(config_path: str) -> dict:
    """Load a raw build configuration from a YAML file."""
    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError([f"config file '{config_path}' not found"]) from None
    except yaml.YAMLError as e:
        raise ConfigError([f"error parsing YAML config: {e}"]) from e
    logger.debug(f"Loaded config from {config_path}")
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError([f"config file '{config_path}' must contain a mapping"])
    return raw


def _int(raw, key, errors, default=0):
    value = raw.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        errors.append(f"{key} must be an integer")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be an integer, got {value!r}")
        return default


def _int_list(raw, key, errors):
    values = raw.get(key) or []
    if not isinstance(values, list):
        errors.append(f"{key} must be a list of integer ids, got {values!r}")
        return ()
    try:
        return tuple(int(v) for v in values)
    except (TypeError, ValueError):
        errors.append(f"{key} must be a list of integer ids")
        return ()


def _duration(raw, key, default, errors):
    value = raw.get(key)
    if value is None or value == "":
        value = default
    try:
        seconds = parse_duration(value)
    except ValueError as e:
        errors.append(f"Failed parsing {key}: {e}")
        return 0.0
    if seconds <= 0:
        errors.append(f"{key} must be a positive duration")
    return seconds


def _prepare_communicator(raw, errors, environ) -> CommunicatorConfig:
    comm_type = raw.get("communicator") or COMMUNICATOR_SSH
    if comm_type not in COMMUNICATOR_TYPES:
        errors.append(f"Unknown communicator '{comm_type}'. Must be one of: {', '.join(COMMUNICATOR_TYPES)}.")

    use_ssl = bool(raw.get("winrm_use_ssl", False))
    comm = CommunicatorConfig(
        type=comm_type,
        ssh_username=raw.get("ssh_username") or "root",
        ssh_port=_int(raw, "ssh_port", errors, default=22),
        ssh_private_key_file=raw.get("ssh_private_key_file") or None,
        ssh_timeout=_duration(raw, "ssh_timeout", DEFAULT_SSH_TIMEOUT, errors),
        winrm_username=raw.get("winrm_username") or "Administrator",
        winrm_password=raw.get("winrm_password") or environ.get("WINRM_PASSWORD") or None,
        winrm_port=_int(raw, "winrm_port", errors, default=5986 if use_ssl else 5985),
        winrm_use_ssl=use_ssl,
        winrm_insecure=bool(raw.get("winrm_insecure", False)),
        winrm_timeout=_duration(raw, "winrm_timeout", DEFAULT_WINRM_TIMEOUT, errors),
        use_private_ip=bool(raw.get("use_private_ip", False)),
    )

    if comm.type == COMMUNICATOR_SSH and comm.ssh_private_key_file:
        path = os.path.expanduser(comm.ssh_private_key_file)
        if not os.path.isfile(path):
            errors.append(f"ssh_private_key_file '{comm.ssh_private_key_file}' does not exist")
    if comm.type == COMMUNICATOR_WINRM and not comm.winrm_password:
        errors.append("winrm_password must be specified for the winrm communicator")
    return comm


def _prepare_provisioners(raw, errors) -> tuple[ProvisionerConfig, ...]:
    entries = raw.get("provisioners") or []
    if not isinstance(entries, list):
        errors.append("provisioners must be a list")
        return ()

    result = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            errors.append(f"provisioners[{i}] must be a mapping with 'inline' or 'script'")
            continue
        inline = entry.get("inline")
        script = entry.get("script")
        if bool(inline) == bool(script):
            errors.append(f"provisioners[{i}]: specify exactly one of 'inline' or 'script'")
            continue
        if inline:
            if isinstance(inline, str):
                inline = [inline]
            result.append(ProvisionerConfig(inline=tuple(str(c) for c in inline)))
        else:
            if not os.path.isfile(os.path.expanduser(script)):
                errors.append(f"provisioners[{i}]: script '{script}' does not exist")
                continue
            result.append(ProvisionerConfig(script=os.path.expanduser(script)))
    return tuple(result)


def prepare_config(raw: dict, environ=None) -> BuildConfig:
    """Apply defaults to a raw config dict and validate it.

    Every problem found is collected and reported in a single ConfigError,
    so the caller sees all of them at once.

    Args:
        raw: mapping as loaded from the YAML config file.
        environ: environment used for credential fallbacks (default: os.environ).

    Returns:
        A frozen BuildConfig.
    """
    environ = os.environ if environ is None else environ
    errors = []

    unknown = sorted(set(raw) - _BUILD_KEYS - _COMMUNICATOR_KEYS)
    for key in unknown:
        errors.append(f"unknown configuration key '{key}'")

    username = raw.get("username") or environ.get("SOFTLAYER_USERNAME", "")
    api_key = raw.get("api_key") or environ.get("SOFTLAYER_API_KEY", "")

    comm = _prepare_communicator(raw, errors, environ)

    instance_cpu = _int(raw, "instance_cpu", errors)
    instance_memory = _int(raw, "instance_memory", errors)
    instance_disk_capacity = _int(raw, "instance_disk_capacity", errors)
    instance_flavor = raw.get("instance_flavor") or None
    by_flavor = not (instance_cpu > 0 or instance_memory > 0 or instance_disk_capacity > 0)

    if not by_flavor and instance_flavor:
        errors.append("instance_flavor must be specified without instance_cpu, instance_memory, and instance_disk_capacity")
    elif by_flavor and not instance_flavor:
        errors.append("instance_flavor must be specified")

    if not api_key:
        errors.append("api_key or the SOFTLAYER_API_KEY environment variable must be specified")
    if not username:
        errors.append("username or the SOFTLAYER_USERNAME environment variable must be specified")

    image_name = raw.get("image_name") or ""
    if not image_name:
        errors.append("image_name must be specified")

    image_type = raw.get("image_type") or IMAGE_TYPE_STANDARD
    if image_type != IMAGE_TYPE_STANDARD:
        errors.append(f"Unknown image_type '{image_type}'. Must be '{IMAGE_TYPE_STANDARD}'.")

    base_image_id = raw.get("base_image_id") or None
    base_os_code = raw.get("base_os_code") or None
    if not base_image_id and not base_os_code:
        errors.append("please specify base_image_id or base_os_code")
    if base_image_id and base_os_code:
        errors.append("please specify only one of base_image_id or base_os_code")

    state_timeout = _duration(raw, "instance_state_timeout", DEFAULT_STATE_TIMEOUT, errors)
    poll_interval = _duration(raw, "poll_interval", "10s", errors)

    public_vlan_id = _int(raw, "public_vlan_id", errors, default=None)
    provisioning_ssh_key_id = _int(raw, "provisioning_ssh_key_id", errors, default=None)

    security_groups = _int_list(raw, "public_security_groups", errors)

    network_speed = _int(raw, "instance_network_speed", errors, default=10) or 10
    provisioners = _prepare_provisioners(raw, errors)

    if errors:
        raise ConfigError(errors)

    return BuildConfig(
        username=username,
        api_key=api_key,
        api_url=raw.get("api_url") or BuildConfig.api_url,
        image_name=image_name,
        image_description=raw.get("image_description") or BuildConfig.image_description,
        image_type=image_type,
        base_image_id=base_image_id,
        base_os_code=base_os_code,
        instance_name=raw.get("instance_name") or f"imgbake-{int(time.time())}",
        instance_domain=raw.get("instance_domain") or BuildConfig.instance_domain,
        instance_flavor=instance_flavor,
        instance_cpu=instance_cpu,
        instance_memory=instance_memory,
        instance_disk_capacity=instance_disk_capacity,
        instance_local_disk_flag=bool(raw.get("instance_local_disk_flag", False)),
        instance_network_speed=network_speed,
        datacenter_name=raw.get("datacenter_name") or BuildConfig.datacenter_name,
        public_vlan_id=public_vlan_id,
        provisioning_ssh_key_id=provisioning_ssh_key_id,
        public_security_groups=security_groups,
        state_timeout=state_timeout,
        poll_interval=poll_interval,
        delete_instance_after_capture=bool(raw.get("delete_instance_after_capture", False)),
        communicator=comm,
        provisioners=provisioners,
    )
