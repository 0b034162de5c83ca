"""Concrete build steps.

The set is closed: CreateTemporaryKey, CreateInstance, WaitForInstance,
GrabPublicIP, Connect, Provision and CaptureImage. Each step records its
results on the BuildState and halts the build by recording an error.
"""

import asyncio
import logging
import os
import time

from imgbake.build.step import Step, StepAction
from imgbake.errors import (
    CommunicatorError,
    InstanceFailedError,
    NoAddressError,
    ProviderError,
    ProvisionError,
    StateTimeoutError,
)
from imgbake.provisioning.keys import generate_key_pair, load_key_pair, write_private_key
from imgbake.provisioning.types import InstanceSpec, InstanceStatus

logger = logging.getLogger(__name__)


async def poll_until(probe, timeout, interval):
    """Call *probe* until it returns something other than None.

    Always polls at least once. Sleeps are clipped to the time left so the
    total wait never exceeds *timeout* by more than one in-flight call.
    Retryable ProviderErrors are logged and polled through; permanent ones
    propagate.

    Returns:
        The first non-None probe result, or None on timeout.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            result = await probe()
        except ProviderError as e:
            if not e.retryable:
                raise
            logger.warning(f"Transient provider error while polling: {e}")
            result = None
        if result is not None:
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval, remaining))


def instance_spec(config, ssh_key_id=None) -> InstanceSpec:
    """Build the provider instance spec from the build config."""
    key_ids = []
    if ssh_key_id is not None:
        key_ids.append(ssh_key_id)
    if config.provisioning_ssh_key_id:
        key_ids.append(config.provisioning_ssh_key_id)

    return InstanceSpec(
        hostname=config.instance_name,
        domain=config.instance_domain,
        datacenter=config.datacenter_name,
        flavor=config.instance_flavor if config.by_flavor else None,
        cpu=config.instance_cpu,
        memory=config.instance_memory,
        disk_capacity=config.instance_disk_capacity,
        local_disk=config.instance_local_disk_flag,
        network_speed=config.instance_network_speed,
        base_image_id=config.base_image_id,
        base_os_code=config.base_os_code,
        public_vlan_id=config.public_vlan_id,
        ssh_key_ids=tuple(key_ids),
        public_security_group_ids=config.public_security_groups,
    )


def _wrapped(message, e):
    err = ProviderError(f"{message}: {e}", e.status_code, e.retryable)
    err.__cause__ = e
    return err


async def _wait_for_active(state, instance_id):
    async def probe():
        status = await state.client.get_instance_status(instance_id)
        return None if status is InstanceStatus.PENDING else status

    return await poll_until(probe, state.config.state_timeout, state.config.poll_interval)


async def _wait_for_capture(state, instance_id):
    """Wait for the capture transaction on *instance_id* to start and then finish.

    The instance reads ACTIVE until the archive transaction is attached, so
    seeing it busy first is what proves the transaction was picked up.

    Returns:
        True once the instance is ACTIVE again after being busy, False on
        timeout or failure.
    """
    async def busy():
        status = await state.client.get_instance_status(instance_id)
        return None if status is InstanceStatus.ACTIVE else status

    if await poll_until(busy, state.config.state_timeout, state.config.poll_interval) is not InstanceStatus.PENDING:
        return False
    return await _wait_for_active(state, instance_id) is InstanceStatus.ACTIVE


# ── Steps ──────────────────────────────────────────────────────────


class CreateTemporaryKey(Step):
    """Provide the key pair the SSH communicator logs in with.

    Loads *private_key_file* when given, otherwise generates a throwaway
    pair. The public half is registered with the provider so it gets
    installed on the instance.
    """

    name = "create_temporary_key"

    def __init__(self, private_key_file=None):
        self.private_key_file = private_key_file

    async def run(self, state):
        ui = state.ui
        try:
            if self.private_key_file:
                ui.info(f"Using SSH key from {self.private_key_file}")
                pair = load_key_pair(self.private_key_file)
                state.ssh_private_key_path = os.path.expanduser(self.private_key_file)
            else:
                ui.info("Creating temporary SSH key for instance...")
                pair = generate_key_pair(comment=f"imgbake-{state.config.instance_name}")
                state.ssh_private_key_path = write_private_key(pair.private_key)
        except (OSError, ValueError) as e:
            state.halt(CommunicatorError(f"error preparing SSH key: {e}"))
            return StepAction.HALT

        state.ssh_private_key = pair.private_key
        state.ssh_public_key = pair.public_key

        try:
            state.ssh_key_id = await state.client.create_ssh_key(f"imgbake-{state.config.instance_name}", pair.public_key)
        except ProviderError as e:
            state.halt(e)
            return StepAction.HALT
        logger.debug(f"Registered SSH key {state.ssh_key_id}")
        return StepAction.CONTINUE

    async def cleanup(self, state):
        if state.ssh_key_id is not None:
            try:
                await state.client.delete_ssh_key(state.ssh_key_id)
            except ProviderError as e:
                state.ui.error(f"Error deleting temporary SSH key {state.ssh_key_id}: {e}")

        if not self.private_key_file and state.ssh_private_key_path:
            try:
                os.remove(state.ssh_private_key_path)
            except FileNotFoundError:
                pass


class CreateInstance(Step):
    name = "create_instance"

    async def run(self, state):
        ui = state.ui
        ui.info("Creating instance...")
        spec = instance_spec(state.config, state.ssh_key_id)
        try:
            state.instance_id = await state.client.create_instance(spec)
        except ProviderError as e:
            state.halt(_wrapped("error creating instance", e))
            return StepAction.HALT
        ui.info(f"Created instance '{state.instance_id}'")
        return StepAction.CONTINUE

    async def cleanup(self, state):
        instance_id = state.instance_id
        if instance_id is None:
            return

        ui = state.ui
        if state.succeeded:
            if not state.config.delete_instance_after_capture:
                ui.info(f"Keeping build instance '{instance_id}'.")
                return
            ui.info("Waiting for image capture to finish before deleting the instance...")
            try:
                finished = await _wait_for_capture(state, instance_id)
            except ProviderError as e:
                logger.warning(f"Could not confirm capture completion: {e}")
                finished = False
            if not finished:
                ui.error(
                    f"Could not confirm that the image capture on instance {instance_id} finished; "
                    "keeping it. Please delete it manually."
                )
                return

        ui.info(f"Destroying instance '{instance_id}'...")
        try:
            await state.client.delete_instance(instance_id)
        except ProviderError as e:
            ui.error(f"Error destroying instance {instance_id}: {e}. Please destroy it manually.")


class WaitForInstance(Step):
    """Poll until the instance reports ACTIVE.

    The WinRM sequence runs this a second time after connecting, since the
    provider reports readiness before Windows setup has really finished.
    """

    name = "wait_for_instance"

    async def run(self, state):
        instance_id = state.require("instance_id")
        timeout = state.config.state_timeout
        state.ui.info(f"Waiting for instance '{instance_id}' to become ACTIVE...")
        try:
            status = await _wait_for_active(state, instance_id)
        except ProviderError as e:
            state.halt(e)
            return StepAction.HALT

        if status is None:
            state.halt(StateTimeoutError(f"instance {instance_id} did not become ACTIVE within {timeout:g}s"))
            return StepAction.HALT
        if status is InstanceStatus.FAILED:
            state.halt(InstanceFailedError(f"instance {instance_id} entered a failed state"))
            return StepAction.HALT
        state.ui.info("Instance is ACTIVE.")
        return StepAction.CONTINUE


class GrabPublicIP(Step):
    name = "grab_public_ip"

    async def run(self, state):
        client = state.client
        instance_id = state.require("instance_id")
        timeout = state.config.state_timeout
        try:
            address = await poll_until(
                lambda: client.get_public_address(instance_id), timeout, state.config.poll_interval
            )
        except ProviderError as e:
            state.halt(e)
            return StepAction.HALT

        if address is None:
            state.halt(NoAddressError(f"no public address assigned to instance {instance_id} within {timeout:g}s"))
            return StepAction.HALT
        state.public_ip = address

        try:
            state.private_ip = await client.get_private_address(instance_id)
        except ProviderError as e:
            logger.debug(f"Private address lookup failed: {e}")

        state.ui.info(f"Public IP: {address}")
        return StepAction.CONTINUE


def comm_host(state):
    """Address the communicator connects to."""
    if state.config.communicator.use_private_ip:
        return state.require("private_ip")
    return state.require("public_ip")


class Connect(Step):
    """Open a communicator session to the instance.

    The connection itself is delegated to *connector*; *host* picks the
    address from the build state.
    """

    name = "connect"

    def __init__(self, connector, host):
        self.connector = connector
        self.host = host

    async def run(self, state):
        host = self.host(state)
        try:
            state.communicator = await self.connector.connect(host, state)
        except CommunicatorError as e:
            state.halt(e)
            return StepAction.HALT
        state.ui.info(f"Connected to {host}.")
        return StepAction.CONTINUE


class Provision(Step):
    name = "provision"

    async def run(self, state):
        if state.hook is None:
            state.ui.info("No provisioners configured.")
            return StepAction.CONTINUE
        communicator = state.require("communicator")
        state.ui.info("Provisioning instance...")
        try:
            await state.hook(communicator)
        except (ProvisionError, CommunicatorError) as e:
            state.halt(e)
            return StepAction.HALT
        return StepAction.CONTINUE


def _newest(ids):
    return max(ids, key=int) if ids else None


class CaptureImage(Step):
    """Capture the instance's disks as a standard image.

    Image names are not unique, so the ids already carrying the name are
    recorded before the capture is submitted; the build's image is the
    newest id that shows up afterwards.
    """

    name = "capture_image"

    async def run(self, state):
        config = state.config
        client = state.client
        instance_id = state.require("instance_id")
        name = config.image_name
        state.ui.info(f"Capturing image '{name}' from instance '{instance_id}'...")
        try:
            existing = set(await client.find_image_ids(name))
            await client.capture_image(instance_id, name, config.image_description)
        except ProviderError as e:
            state.halt(_wrapped("error capturing image", e))
            return StepAction.HALT

        async def new_image():
            return _newest([i for i in await client.find_image_ids(name) if i not in existing])

        timeout = config.state_timeout
        try:
            image_id = await poll_until(new_image, timeout, config.poll_interval)
        except ProviderError as e:
            state.halt(_wrapped(f"error looking up captured image '{name}'", e))
            return StepAction.HALT
        if image_id is None:
            state.halt(
                StateTimeoutError(
                    f"image '{name}' was not listed within {timeout:g}s of submitting the capture; "
                    "it may still appear and need deleting manually"
                )
            )
            return StepAction.HALT

        state.image_id = image_id
        state.ui.info(f"Image '{name}' captured (id={image_id}).")
        return StepAction.CONTINUE
