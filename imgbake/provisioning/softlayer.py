"""SoftLayer provider: create/delete instances and capture images via the REST API."""

import json
import logging

import httpx

from imgbake.errors import ProviderError
from imgbake.provisioning.types import InstanceSpec, InstanceStatus

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.softlayer.com/rest/v3.1"
DEFAULT_TIMEOUT = 60

_INSTANCE_MASK = "mask[id,provisionDate,activeTransactionCount,powerState.keyName,status.keyName]"
_FAILED_STATUSES = {"DISCONNECTED", "FAILED"}
# Swap and metadata disks cannot be part of a standard image
_EXCLUDED_DEVICES = {"1", "7"}


def _is_retryable(status_code):
    return status_code == 429 or status_code >= 500


def _error_message(resp):
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and "error" in body:
        code = body.get("code")
        return f"{body['error']} ({code})" if code else body["error"]
    return resp.text


def build_instance_template(spec: InstanceSpec) -> dict:
    """Translate an InstanceSpec into a SoftLayer_Virtual_Guest template."""
    template = {
        "hostname": spec.hostname,
        "domain": spec.domain,
        "datacenter": {"name": spec.datacenter},
        "hourlyBillingFlag": True,
        "localDiskFlag": spec.local_disk,
        "networkComponents": [{"maxSpeed": spec.network_speed}],
    }

    if spec.flavor:
        template["supplementalCreateObjectOptions"] = {"flavorKeyName": spec.flavor}
    else:
        template["startCpus"] = spec.cpu
        template["maxMemory"] = spec.memory
        if spec.disk_capacity:
            template["blockDevices"] = [{"device": "0", "diskImage": {"capacity": spec.disk_capacity}}]

    if spec.base_image_id:
        template["blockDeviceTemplateGroup"] = {"globalIdentifier": spec.base_image_id}
    else:
        template["operatingSystemReferenceCode"] = spec.base_os_code

    primary = {}
    if spec.public_vlan_id:
        primary["networkVlan"] = {"id": spec.public_vlan_id}
    if spec.public_security_group_ids:
        primary["securityGroupBindings"] = [{"securityGroup": {"id": g}} for g in spec.public_security_group_ids]
    if primary:
        template["primaryNetworkComponent"] = primary

    if spec.ssh_key_ids:
        template["sshKeys"] = [{"id": k} for k in spec.ssh_key_ids]
    return template


def parse_instance_status(info: dict) -> InstanceStatus:
    """Map a SoftLayer_Virtual_Guest object onto InstanceStatus."""
    status = (info.get("status") or {}).get("keyName", "")
    if status in _FAILED_STATUSES:
        return InstanceStatus.FAILED
    power = (info.get("powerState") or {}).get("keyName", "")
    if info.get("provisionDate") and not info.get("activeTransactionCount") and power == "RUNNING":
        return InstanceStatus.ACTIVE
    return InstanceStatus.PENDING


class SoftLayerClient:
    """Thin async wrapper around the SoftLayer REST API.

    Holds only immutable credentials, so one instance can be shared by all
    steps of a build. Calls never retry; failures raise ProviderError with
    ``retryable`` set for network errors, rate limiting and 5xx responses.
    """

    def __init__(self, username, api_key, api_url=DEFAULT_API_URL, timeout=DEFAULT_TIMEOUT, transport=None):
        self.username = username
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def __repr__(self):
        return f"SoftLayerClient(username={self.username!r}, api_url={self.api_url!r})"

    # ── API helpers ───────────────────────────────────────────────

    async def _api_request(self, method, path, parameters=None, params=None):
        """Make an authenticated SoftLayer API request.

        Wraps *parameters* in the ``{"parameters": [...]}`` envelope.

        Returns:
            Parsed JSON response.
        """
        url = f"{self.api_url}/{path}.json"
        payload = {"parameters": parameters} if parameters is not None else None
        logger.debug(f"{method} {url}")

        try:
            async with httpx.AsyncClient(transport=self._transport, auth=(self.username, self.api_key)) as client:
                resp = await client.request(method, url, json=payload, params=params, timeout=self.timeout)
        except httpx.TransportError as e:
            raise ProviderError(f"{method} {path} failed: {e}", retryable=True) from e

        if resp.is_error:
            raise ProviderError(
                f"{method} {path} failed with HTTP {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
                retryable=_is_retryable(resp.status_code),
            )
        if not resp.content:
            return None
        return resp.json()

    # ── Instances ─────────────────────────────────────────────────

    async def create_instance(self, spec: InstanceSpec) -> str:
        """Order a new virtual guest.

        POST SoftLayer_Virtual_Guest/createObject
        """
        result = await self._api_request("POST", "SoftLayer_Virtual_Guest/createObject", [build_instance_template(spec)])
        if not result or "id" not in result:
            raise ProviderError("no instance id returned from createObject")
        return str(result["id"])

    async def get_instance_status(self, instance_id) -> InstanceStatus:
        """GET SoftLayer_Virtual_Guest/{id}/getObject"""
        info = await self._api_request(
            "GET", f"SoftLayer_Virtual_Guest/{instance_id}/getObject", params={"objectMask": _INSTANCE_MASK}
        )
        return parse_instance_status(info or {})

    async def get_public_address(self, instance_id) -> str | None:
        """Primary public IP, or None while it is not yet assigned."""
        address = await self._api_request("GET", f"SoftLayer_Virtual_Guest/{instance_id}/getPrimaryIpAddress")
        return address or None

    async def get_private_address(self, instance_id) -> str | None:
        address = await self._api_request("GET", f"SoftLayer_Virtual_Guest/{instance_id}/getPrimaryBackendIpAddress")
        return address or None

    async def delete_instance(self, instance_id) -> None:
        logger.info(f"Deleting SoftLayer instance '{instance_id}'...")
        await self._api_request("GET", f"SoftLayer_Virtual_Guest/{instance_id}/deleteObject")

    # ── Images ────────────────────────────────────────────────────

    async def _capture_block_devices(self, instance_id):
        devices = await self._api_request(
            "GET",
            f"SoftLayer_Virtual_Guest/{instance_id}/getBlockDevices",
            params={"objectMask": "mask[id,device]"},
        )
        return [{"id": d["id"]} for d in devices or [] if str(d.get("device")) not in _EXCLUDED_DEVICES]

    async def find_image_ids(self, name) -> list[str]:
        """Ids of every image template group called *name*.

        Names are not unique, so this can return images from earlier builds.
        """
        object_filter = {"blockDeviceTemplateGroups": {"name": {"operation": name}}}
        groups = await self._api_request(
            "GET",
            "SoftLayer_Account/getBlockDeviceTemplateGroups",
            params={"objectMask": "mask[id,name,globalIdentifier]", "objectFilter": json.dumps(object_filter)},
        )
        return [str(g["id"]) for g in groups or []]

    async def capture_image(self, instance_id, name, description) -> None:
        """Submit a standard image capture of the instance's disks.

        POST SoftLayer_Virtual_Guest/{id}/createArchiveTransaction

        The capture runs asynchronously; the new image template group shows
        up in find_image_ids() some time after this returns.
        """
        block_devices = await self._capture_block_devices(instance_id)
        if not block_devices:
            raise ProviderError(f"instance {instance_id} has no block devices to capture")

        await self._api_request(
            "POST",
            f"SoftLayer_Virtual_Guest/{instance_id}/createArchiveTransaction",
            [name, block_devices, description],
        )

    async def delete_image(self, image_id) -> None:
        logger.info(f"Deleting SoftLayer image '{image_id}'...")
        await self._api_request("GET", f"SoftLayer_Virtual_Guest_Block_Device_Template_Group/{image_id}/deleteObject")

    # ── SSH keys ──────────────────────────────────────────────────

    async def create_ssh_key(self, label, public_key) -> int:
        """Register a public key.

        POST SoftLayer_Security_Ssh_Key/createObject
        """
        result = await self._api_request("POST", "SoftLayer_Security_Ssh_Key/createObject", [{"label": label, "key": public_key}])
        if not result or "id" not in result:
            raise ProviderError("no key id returned from SoftLayer_Security_Ssh_Key/createObject")
        return int(result["id"])

    async def delete_ssh_key(self, key_id) -> None:
        await self._api_request("GET", f"SoftLayer_Security_Ssh_Key/{key_id}/deleteObject")
