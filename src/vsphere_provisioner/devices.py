"""
Device change builders for a template's virtual hardware.

Every builder takes the template's current device list and returns new
VirtualDeviceSpec objects. The device list itself is never modified.
"""

import logging
from typing import List, Sequence, Type

from pyVmomi import vim

from vsphere_provisioner.errors import DeviceSpecFailure

logger = logging.getLogger(__name__)

# Keys for devices added in the same reconfigure must be negative
# and must not collide with each other.
MIN_NEW_DEVICE_KEY = -200

# An IDE controller has a master and a slave unit.
IDE_CONTROLLER_UNITS = 2

DeviceList = Sequence[vim.vm.device.VirtualDevice]


def select_by_type(devices: DeviceList, device_type: Type) -> List[vim.vm.device.VirtualDevice]:
    """Return all devices that are instances of device_type."""
    return [device for device in devices if isinstance(device, device_type)]


def new_key(devices: DeviceList) -> int:
    """Return a temporary key lower than every key in devices."""
    key = MIN_NEW_DEVICE_KEY
    for device in devices:
        if device.key is not None and device.key < key:
            key = device.key
    return key - 1


def remove_devices_of_type(devices: DeviceList, device_type: Type) -> List[vim.vm.device.VirtualDeviceSpec]:
    """Build one remove spec per device of the given type."""
    return [
        vim.vm.device.VirtualDeviceSpec(
            operation=vim.vm.device.VirtualDeviceSpec.Operation.remove,
            device=device,
        )
        for device in select_by_type(devices, device_type)
    ]


def remove_floppy_devices(devices: DeviceList) -> List[vim.vm.device.VirtualDeviceSpec]:
    """Remove every floppy drive.

    Ubuntu cloud images try to write to an attached floppy during boot and
    fail when the drive holds no disk (launchpad bug 1573095).
    """
    specs = remove_devices_of_type(devices, vim.vm.device.VirtualFloppy)
    if specs:
        logger.debug(f"Removing {len(specs)} floppy device(s) from clone")
    return specs


def _next_unit_number(devices: DeviceList, controller: vim.vm.device.VirtualController) -> int:
    used = {
        device.unitNumber
        for device in devices
        if device.controllerKey == controller.key and device.unitNumber is not None
    }
    for unit in range(IDE_CONTROLLER_UNITS):
        if unit not in used:
            return unit
    raise DeviceSpecFailure(f"IDE controller {controller.key} has no free unit")


def create_cdrom(
    devices: DeviceList,
    controller: vim.vm.device.VirtualIDEController,
) -> vim.vm.device.VirtualCdrom:
    """Create a CD-ROM drive attached to controller at its next free unit."""
    cdrom = vim.vm.device.VirtualCdrom()
    cdrom.key = new_key(list(devices) + [controller])
    cdrom.controllerKey = controller.key
    cdrom.unitNumber = _next_unit_number(devices, controller)
    cdrom.connectable = vim.vm.device.VirtualDevice.ConnectInfo(
        allowGuestControl=True,
        startConnected=True,
        connected=False,
    )
    return cdrom


def build_removable_media_spec(devices: DeviceList, iso_path: str) -> List[vim.vm.device.VirtualDeviceSpec]:
    """
    Replace all CD-ROM drives and IDE controllers with one IDE controller
    holding one CD-ROM backed by iso_path.

    Reusing a template controller would leave the controller key and the
    free units up to the template, so a fresh controller is always added.

    Args:
        devices: Current template device list
        iso_path: Datastore path of the ISO, e.g. "[datastore1] node/cloud-init.iso"

    Returns:
        Removes (CD-ROMs, then IDE controllers), then the controller add,
        then the CD-ROM add
    """
    specs = remove_devices_of_type(devices, vim.vm.device.VirtualCdrom)
    specs.extend(remove_devices_of_type(devices, vim.vm.device.VirtualIDEController))

    controller = vim.vm.device.VirtualIDEController()
    controller.key = new_key(devices)
    controller.busNumber = 0
    specs.append(
        vim.vm.device.VirtualDeviceSpec(
            operation=vim.vm.device.VirtualDeviceSpec.Operation.add,
            device=controller,
        )
    )

    cdrom = create_cdrom(devices, controller)
    cdrom.backing = vim.vm.device.VirtualCdrom.IsoBackingInfo(fileName=iso_path)
    specs.append(
        vim.vm.device.VirtualDeviceSpec(
            operation=vim.vm.device.VirtualDeviceSpec.Operation.add,
            device=cdrom,
        )
    )

    return specs
