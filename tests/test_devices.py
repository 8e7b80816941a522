"""Tests for devices module."""

import pytest
from pyVmomi import vim

from vsphere_provisioner.devices import (
    MIN_NEW_DEVICE_KEY,
    build_removable_media_spec,
    create_cdrom,
    new_key,
    remove_devices_of_type,
    remove_floppy_devices,
    select_by_type,
)
from vsphere_provisioner.errors import DeviceSpecFailure

ADD = vim.vm.device.VirtualDeviceSpec.Operation.add
REMOVE = vim.vm.device.VirtualDeviceSpec.Operation.remove


def test_remove_devices_of_type_empty_list():
    """Test no specs are built for an empty device list."""
    assert remove_devices_of_type([], vim.vm.device.VirtualCdrom) == []


@pytest.mark.parametrize("count", [0, 1, 3])
def test_remove_devices_of_type_one_per_match(count, template_devices):
    """Test one remove per matching device and none for other types."""
    cdroms = [vim.vm.device.VirtualCdrom(key=3000 + i) for i in range(count)]
    devices = template_devices + cdroms

    specs = remove_devices_of_type(devices, vim.vm.device.VirtualCdrom)

    assert len(specs) == count
    assert all(spec.operation == REMOVE for spec in specs)
    assert [spec.device.key for spec in specs] == [d.key for d in cdroms]


def test_remove_devices_of_type_ignores_other_types(template_devices):
    """Test a device class absent from the list yields nothing."""
    assert remove_devices_of_type(template_devices, vim.vm.device.VirtualCdrom) == []


def test_remove_floppy_devices(template_devices, floppy):
    """Test the template floppy is removed."""
    specs = remove_floppy_devices(template_devices)

    assert len(specs) == 1
    assert specs[0].operation == REMOVE
    assert specs[0].device is floppy


def test_select_by_type_matches_subclasses(template_devices):
    """Test controller subclasses are selected by their base class."""
    controllers = select_by_type(template_devices, vim.vm.device.VirtualController)
    assert [c.key for c in controllers] == [1000]


def test_new_key_empty_list():
    """Test new keys start below the reserved range."""
    assert new_key([]) == MIN_NEW_DEVICE_KEY - 1


def test_new_key_below_existing_negative_keys():
    """Test new key is below every existing key."""
    devices = [vim.vm.device.VirtualCdrom(key=-205), vim.vm.device.VirtualCdrom(key=3000)]
    assert new_key(devices) == -206


def test_create_cdrom_takes_next_free_unit():
    """Test the CD-ROM lands on the first free unit of the controller."""
    controller = vim.vm.device.VirtualIDEController(key=200, busNumber=0)
    devices = [controller, vim.vm.device.VirtualCdrom(key=3000, controllerKey=200, unitNumber=0)]

    cdrom = create_cdrom(devices, controller)

    assert cdrom.controllerKey == 200
    assert cdrom.unitNumber == 1
    assert cdrom.key < 0
    assert cdrom.connectable.startConnected is True


def test_create_cdrom_full_controller_raises():
    """Test a full IDE controller is reported."""
    controller = vim.vm.device.VirtualIDEController(key=200, busNumber=0)
    devices = [
        controller,
        vim.vm.device.VirtualCdrom(key=3000, controllerKey=200, unitNumber=0),
        vim.vm.device.VirtualCdrom(key=3001, controllerKey=200, unitNumber=1),
    ]

    with pytest.raises(DeviceSpecFailure, match="no free unit"):
        create_cdrom(devices, controller)


def test_build_removable_media_spec_without_ide_devices(template_devices):
    """Test a template without IDE devices gets a controller add then a CD-ROM add."""
    specs = build_removable_media_spec(template_devices, "[datastore1] web-01/cloud-init.iso")

    assert [spec.operation for spec in specs] == [ADD, ADD]
    controller, cdrom = specs[0].device, specs[1].device
    assert isinstance(controller, vim.vm.device.VirtualIDEController)
    assert isinstance(cdrom, vim.vm.device.VirtualCdrom)
    assert cdrom.controllerKey == controller.key
    assert cdrom.unitNumber == 0
    assert cdrom.key != controller.key
    assert isinstance(cdrom.backing, vim.vm.device.VirtualCdrom.IsoBackingInfo)
    assert cdrom.backing.fileName == "[datastore1] web-01/cloud-init.iso"


def test_build_removable_media_spec_replaces_ide_devices(ide_devices):
    """Test existing CD-ROMs and IDE controllers are removed before the adds."""
    specs = build_removable_media_spec(ide_devices, "[datastore1] node/cloud-init.iso")

    ops = [spec.operation for spec in specs]
    assert ops == [REMOVE, REMOVE, REMOVE, ADD, ADD]
    assert [spec.device.key for spec in specs[:3]] == [3002, 200, 201]

    controller, cdrom = specs[3].device, specs[4].device
    assert isinstance(controller, vim.vm.device.VirtualIDEController)
    assert controller.key not in {200, 201, 3002}
    assert cdrom.controllerKey == controller.key
    assert cdrom.unitNumber == 0


def test_build_removable_media_spec_does_not_modify_devices(ide_devices):
    """Test the template device list is left untouched."""
    before = [(d.key, type(d)) for d in ide_devices]

    build_removable_media_spec(ide_devices, "[datastore1] node/cloud-init.iso")

    assert [(d.key, type(d)) for d in ide_devices] == before
    assert ide_devices[2].backing is None
