"""Boot disk resizing for cloned VMs."""

import logging
from typing import Optional

from pyVmomi import vim

from vsphere_provisioner.devices import DeviceList, select_by_type
from vsphere_provisioner.errors import DeviceSpecFailure

logger = logging.getLogger(__name__)


def get_disk_spec(
    devices: DeviceList,
    disk_size_gb: int,
    instance_name: Optional[str] = None,
) -> vim.vm.device.VirtualDeviceSpec:
    """Grow the template's only disk to disk_size_gb.

    Args:
        devices: Current template device list
        disk_size_gb: Requested size in GB
        instance_name: VM the disk belongs to, for error context

    Returns:
        Edit spec for a copy of the template disk

    Raises:
        DeviceSpecFailure: If the template has more or less than one disk,
            or the requested size is below the template disk's size
    """
    disks = select_by_type(devices, vim.vm.device.VirtualDisk)
    if len(disks) != 1:
        raise DeviceSpecFailure(f"invalid disk count: {len(disks)}", instance_name=instance_name)

    template_disk = disks[0]
    capacity_kb = disk_size_gb * 1024 * 1024
    if template_disk.capacityInKB and capacity_kb < template_disk.capacityInKB:
        raise DeviceSpecFailure(
            f"requested disk size {disk_size_gb}GB is smaller than the template disk "
            f"({template_disk.capacityInKB // (1024 * 1024)}GB)",
            instance_name=instance_name,
            path=getattr(template_disk.backing, "fileName", None),
        )

    disk = vim.vm.device.VirtualDisk(
        key=template_disk.key,
        controllerKey=template_disk.controllerKey,
        unitNumber=template_disk.unitNumber,
        backing=template_disk.backing,
        capacityInKB=capacity_kb,
    )
    logger.debug(f"Resizing disk {disk.key} to {disk_size_gb}GB")

    return vim.vm.device.VirtualDeviceSpec(
        operation=vim.vm.device.VirtualDeviceSpec.Operation.edit,
        device=disk,
    )
