"""Shared test fixtures for vsphere_provisioner tests."""

from typing import List
from unittest import mock

import pytest
from pyVmomi import vim

from vsphere_fakes import FakeTask
from vsphere_provisioner.config import ProviderConfig
from vsphere_provisioner.userdata import UserdataImageBuilder


@pytest.fixture
def provider_config() -> ProviderConfig:
    """Minimal valid configuration without disk or network overrides."""
    return ProviderConfig(
        vsphere_url="vcenter.example.com",
        username="administrator@vsphere.local",
        password="secret",
        datacenter="dc1",
        datastore="datastore1",
        folder="k8s/nodes",
        template_vm_name="ubuntu-template",
        cpus=2,
        memory_mb=4096,
        task_poll_interval=0.01,
    )


@pytest.fixture
def floppy() -> vim.vm.device.VirtualFloppy:
    return vim.vm.device.VirtualFloppy(key=8000)


@pytest.fixture
def template_disk() -> vim.vm.device.VirtualDisk:
    return vim.vm.device.VirtualDisk(
        key=2000,
        controllerKey=1000,
        unitNumber=0,
        capacityInKB=10 * 1024 * 1024,
        backing=vim.vm.device.VirtualDisk.FlatVer2BackingInfo(
            fileName="[datastore1] ubuntu-template/ubuntu-template.vmdk",
            diskMode="persistent",
        ),
    )


@pytest.fixture
def template_devices(floppy, template_disk) -> List[vim.vm.device.VirtualDevice]:
    """Template with one floppy, one disk on a SCSI controller and no IDE devices."""
    return [
        vim.vm.device.VirtualLsiLogicController(key=1000, busNumber=0),
        template_disk,
        floppy,
    ]


@pytest.fixture
def ide_devices() -> List[vim.vm.device.VirtualDevice]:
    """Two IDE controllers with a CD-ROM on the second one."""
    return [
        vim.vm.device.VirtualIDEController(key=200, busNumber=0),
        vim.vm.device.VirtualIDEController(key=201, busNumber=1),
        vim.vm.device.VirtualCdrom(key=3002, controllerKey=201, unitNumber=0),
    ]


@pytest.fixture
def template_vm(template_devices) -> mock.MagicMock:
    vm = mock.MagicMock()
    vm.name = "ubuntu-template"
    vm.config.hardware.device = template_devices
    vm.config.vAppConfig = None
    vm.Clone.return_value = FakeTask(["running", "success"])
    return vm


@pytest.fixture
def cloned_vm() -> mock.MagicMock:
    vm = mock.MagicMock()
    vm.name = "web-01"
    vm._moId = "vm-1042"
    return vm


@pytest.fixture
def mock_session(template_vm, cloned_vm) -> mock.MagicMock:
    """Session with the template, the target folder and the clone resolvable by name."""
    session = mock.MagicMock()
    session.datastore = vim.Datastore("datastore-11")
    session.datastore_path.side_effect = lambda path: f"[datastore1] {path}"
    session.find_folder.return_value = vim.Folder("group-v42")
    vms = {"ubuntu-template": template_vm, "web-01": cloned_vm}
    session.find_vm.side_effect = lambda name: vms.get(name)
    session.find_network.return_value = None
    session.delete_datastore_file.return_value = FakeTask(["success"])
    return session


@pytest.fixture
def image_builder(tmp_path) -> mock.MagicMock:
    """Image builder that drops an empty ISO into tmp_path instead of running genisoimage."""
    builder = mock.MagicMock(spec=UserdataImageBuilder)

    def _build(userdata: str, name: str) -> str:
        iso = tmp_path / f"{name}.iso"
        iso.write_bytes(b"iso")
        return str(iso)

    builder.build.side_effect = _build
    return builder
