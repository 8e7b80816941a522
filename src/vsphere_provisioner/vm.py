"""
src/vsphere_provisioner/vm.py

Clone a vSphere template into a new VM and hand it its userdata.

CoreOS-family guests read userdata from vApp properties of the template;
every other guest gets a cloud-init ISO attached as a CD-ROM.
"""

import asyncio
import logging
import posixpath
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pyVmomi import vim

from vsphere_provisioner.config import ProviderConfig
from vsphere_provisioner.coreos import build_coreos_properties
from vsphere_provisioner.devices import build_removable_media_spec, remove_floppy_devices
from vsphere_provisioner.disks import get_disk_spec
from vsphere_provisioner.errors import (
    CloneSubmitFailure,
    CloneTaskFailure,
    DeleteFailure,
    DeviceEnumerationFailure,
    FolderNotFound,
    PostCloneLookupFailure,
    ProvisioningError,
    TemplateNotFound,
)
from vsphere_provisioner.network import get_network_specs
from vsphere_provisioner.session import wait_for_task
from vsphere_provisioner.userdata import (
    UserdataImageBuilder,
    UserdataTransport,
    generate_and_upload_userdata_iso,
)

logger = logging.getLogger(__name__)

DISK_MOVE_TYPE = vim.vm.RelocateSpec.DiskMoveOptions.moveAllDiskBackingsAndConsolidate

# Guests need stable disk UUIDs to map vSphere disks to block devices.
DISK_UUID_ENABLED = True


class GuestOS(Enum):
    """Guest operating systems a template can run."""

    COREOS = "coreos"
    CONTAINER_LINUX = "container-linux"
    FLATCAR = "flatcar"
    UBUNTU = "ubuntu"
    CENTOS = "centos"
    RHEL = "rhel"
    SLES = "sles"


class InjectionStrategy(Enum):
    """How userdata reaches the guest."""

    ISO = "iso"
    GUEST_PROPERTIES = "guest-properties"


INJECTION_STRATEGIES: Dict[GuestOS, InjectionStrategy] = {
    GuestOS.COREOS: InjectionStrategy.GUEST_PROPERTIES,
    GuestOS.CONTAINER_LINUX: InjectionStrategy.GUEST_PROPERTIES,
    GuestOS.FLATCAR: InjectionStrategy.GUEST_PROPERTIES,
    GuestOS.UBUNTU: InjectionStrategy.ISO,
    GuestOS.CENTOS: InjectionStrategy.ISO,
    GuestOS.RHEL: InjectionStrategy.ISO,
    GuestOS.SLES: InjectionStrategy.ISO,
}


def injection_strategy(guest_os: GuestOS) -> InjectionStrategy:
    return INJECTION_STRATEGIES[guest_os]


class CloneState(Enum):
    """Progress of a single clone attempt."""

    RESOLVING = "resolving"
    DEVICE_LISTING = "device_listing"
    INJECTION_PREPARED = "injection_prepared"
    SPEC_ASSEMBLED = "spec_assembled"
    CLONING = "cloning"
    COMPLETED = "completed"
    FAILED = "failed"


class CloneOrchestrator:
    """Turns one machine request into a cloned, userdata-ready VM."""

    def __init__(
        self,
        session: Any,
        config: ProviderConfig,
        image_builder: Optional[UserdataImageBuilder] = None,
    ):
        self.session = session
        self.config = config
        self.image_builder = image_builder or UserdataImageBuilder()
        self.state = CloneState.RESOLVING

    def _advance(self, state: CloneState, vm_name: str) -> None:
        logger.debug(f"Clone {vm_name}: {self.state.value} -> {state.value}")
        self.state = state

    async def clone(self, vm_name: str, guest_os: Union[GuestOS, str], userdata: str) -> Any:
        """
        Clone the configured template into vm_name.

        Nothing is rolled back on failure. An ISO uploaded before a failed
        clone stays on the datastore until delete_cloned_vm removes it.

        Args:
            vm_name: Name of the new VM, unique among in-flight clones
            guest_os: Guest OS of the template, picks the userdata path
            userdata: Raw userdata for the guest

        Returns:
            The new VirtualMachine

        Raises:
            ProvisioningError: On any failed step
            ValueError: If guest_os is not a known GuestOS
        """
        self.state = CloneState.RESOLVING
        try:
            vm = await self._clone(vm_name, GuestOS(guest_os), userdata)
        except (ProvisioningError, ValueError) as e:
            logger.error(f"❌ Failed to clone VM {vm_name} in state {self.state.value}: {e}")
            self._advance(CloneState.FAILED, vm_name)
            raise
        self._advance(CloneState.COMPLETED, vm_name)
        return vm

    async def _clone(self, vm_name: str, guest_os: GuestOS, userdata: str) -> Any:
        template_vm, target_folder = self._resolve(vm_name)
        target_vm_path = posixpath.join("/", self.config.folder, vm_name)

        self._advance(CloneState.DEVICE_LISTING, vm_name)
        try:
            devices = list(template_vm.config.hardware.device)
        except Exception as e:
            raise DeviceEnumerationFailure(
                "failed to list devices of template VM",
                instance_name=vm_name,
                path=self.config.template_vm_name,
                cause=e,
            ) from e

        device_specs: List[vim.vm.device.VirtualDeviceSpec] = []
        device_specs.extend(remove_floppy_devices(devices))

        property_specs: List[vim.vApp.PropertySpec] = []
        if injection_strategy(guest_os) == InjectionStrategy.GUEST_PROPERTIES:
            logger.debug(f"Injecting userdata for {vm_name} through vApp properties")
            property_specs.extend(build_coreos_properties(template_vm, userdata))
        else:
            logger.debug(f"Injecting userdata for {vm_name} through a cloud-init ISO")
            iso_path = await asyncio.to_thread(
                generate_and_upload_userdata_iso, self.session, userdata, vm_name, self.image_builder
            )
            device_specs.extend(build_removable_media_spec(devices, iso_path))
        self._advance(CloneState.INJECTION_PREPARED, vm_name)

        if self.config.disk_size_gb is not None:
            device_specs.append(get_disk_spec(devices, self.config.disk_size_gb, instance_name=vm_name))

        networks = self.config.network_names()
        if networks:
            pending = [
                spec.device for spec in device_specs
                if spec.operation == vim.vm.device.VirtualDeviceSpec.Operation.add
            ]
            device_specs.extend(get_network_specs(self.session, devices, networks, pending, instance_name=vm_name))

        clone_spec = self.build_clone_spec(target_folder, device_specs, property_specs)
        self._advance(CloneState.SPEC_ASSEMBLED, vm_name)

        logger.info(f"Cloning the template VM {self.config.template_vm_name!r} to {target_vm_path!r}...")
        try:
            task = template_vm.Clone(folder=target_folder, name=vm_name, spec=clone_spec)
        except Exception as e:
            raise CloneSubmitFailure(
                "failed to clone template vm", instance_name=vm_name, path=target_vm_path, cause=e
            ) from e
        self._advance(CloneState.CLONING, vm_name)

        try:
            await wait_for_task(task, self.config.task_poll_interval, instance_name=vm_name)
        except ProvisioningError:
            raise
        except Exception as e:
            raise CloneTaskFailure(
                "error when waiting for result of clone task", instance_name=vm_name, path=target_vm_path, cause=e
            ) from e
        logger.info(f"✅ Successfully cloned the template VM {self.config.template_vm_name!r} to {target_vm_path!r}")

        try:
            vm = self.session.find_vm(vm_name)
        except Exception as e:
            raise PostCloneLookupFailure(
                "failed to get virtual machine object after cloning",
                instance_name=vm_name,
                path=target_vm_path,
                cause=e,
            ) from e
        if vm is None:
            raise PostCloneLookupFailure(
                "failed to get virtual machine object after cloning: not found by name",
                instance_name=vm_name,
                path=target_vm_path,
            )

        return vm

    def _resolve(self, vm_name: str) -> Tuple[Any, Any]:
        try:
            template_vm = self.session.find_vm(self.config.template_vm_name)
        except Exception as e:
            raise TemplateNotFound(
                "failed to get template vm", instance_name=vm_name, path=self.config.template_vm_name, cause=e
            ) from e
        if template_vm is None:
            raise TemplateNotFound(
                f"failed to get template vm {self.config.template_vm_name!r}: not found",
                instance_name=vm_name,
                path=self.config.template_vm_name,
            )

        try:
            folder = self.session.find_folder(self.config.folder)
        except Exception as e:
            raise FolderNotFound(
                "failed to get VM folder", instance_name=vm_name, path=self.config.folder, cause=e
            ) from e
        if folder is None:
            raise FolderNotFound(
                f"failed to get VM folder {self.config.folder!r}: not found",
                instance_name=vm_name,
                path=self.config.folder,
            )

        return template_vm, folder

    def build_clone_spec(
        self,
        folder: Any,
        device_specs: List[vim.vm.device.VirtualDeviceSpec],
        property_specs: List[vim.vApp.PropertySpec],
    ) -> vim.vm.CloneSpec:
        """Assemble the clone spec from the accumulated device and vApp changes."""
        location = vim.vm.RelocateSpec(
            datastore=self.session.datastore,
            diskMoveType=DISK_MOVE_TYPE,
            folder=folder,
        )

        config_spec = vim.vm.ConfigSpec(
            numCPUs=self.config.cpus,
            memoryMB=self.config.memory_mb,
            deviceChange=device_specs,
            flags=vim.vm.FlagInfo(diskUuidEnabled=DISK_UUID_ENABLED),
        )
        if property_specs:
            config_spec.vAppConfig = vim.vApp.VmConfigSpec(property=property_specs)

        return vim.vm.CloneSpec(location=location, config=config_spec, powerOn=False, template=False)


async def create_cloned_vm(
    vm_name: str,
    config: ProviderConfig,
    session: Any,
    guest_os: Union[GuestOS, str],
    userdata: str,
    image_builder: Optional[UserdataImageBuilder] = None,
) -> Any:
    """Clone the configured template into vm_name. See CloneOrchestrator.clone."""
    orchestrator = CloneOrchestrator(session, config, image_builder)
    return await orchestrator.clone(vm_name, guest_os, userdata)


async def delete_cloned_vm(vm_name: str, session: Any, poll_interval: float = 2.0) -> bool:
    """
    Power off and destroy a cloned VM, then remove its userdata ISO.

    Safe to re-run: a missing VM or ISO is not an error.

    Returns:
        True if a VM was found and destroyed, False if it did not exist
    """
    try:
        vm = session.find_vm(vm_name)
    except Exception as e:
        raise DeleteFailure("failed to look up VM", instance_name=vm_name, cause=e) from e

    if vm is not None:
        try:
            if vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOn:
                logger.info(f"⏹️  Powering off VM {vm_name}")
                await wait_for_task(vm.PowerOffVM_Task(), poll_interval, vm_name, DeleteFailure)

            logger.info(f"🗑️  Destroying VM {vm_name}")
            await wait_for_task(vm.Destroy_Task(), poll_interval, vm_name, DeleteFailure)
        except ProvisioningError:
            raise
        except Exception as e:
            raise DeleteFailure("failed to destroy VM", instance_name=vm_name, cause=e) from e
    else:
        logger.info(f"ℹ️  VM {vm_name} does not exist")

    await UserdataTransport(session).remove(vm_name, poll_interval)
    return vm is not None
