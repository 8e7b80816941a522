"""Tests for network module."""

from unittest import mock

import pytest
from pyVmomi import vim

from vsphere_fakes import fake
from vsphere_provisioner.errors import NetworkNotFound
from vsphere_provisioner.network import get_network_specs

ADD = vim.vm.device.VirtualDeviceSpec.Operation.add
REMOVE = vim.vm.device.VirtualDeviceSpec.Operation.remove


@pytest.fixture
def networks():
    vm_network = fake(vim.Network)
    vm_network.name = "VM Network"
    portgroup = fake(vim.dvs.DistributedVirtualPortgroup, key="dvportgroup-31")
    portgroup.name = "k8s-pg"
    portgroup.config.distributedVirtualSwitch.uuid = "50 2a 7b 11"
    return {"VM Network": vm_network, "k8s-pg": portgroup}


@pytest.fixture
def session(networks):
    session = mock.MagicMock()
    session.find_network.side_effect = lambda name: networks.get(name)
    return session


def test_get_network_specs_replaces_template_nics(session, networks, template_devices):
    """Test template NICs are removed and one vmxnet3 is added per network."""
    old_nic = vim.vm.device.VirtualE1000(key=4000)
    devices = template_devices + [old_nic]

    specs = get_network_specs(session, devices, ["VM Network"])

    assert [spec.operation for spec in specs] == [REMOVE, ADD]
    assert specs[0].device is old_nic
    nic = specs[1].device
    assert isinstance(nic, vim.vm.device.VirtualVmxnet3)
    assert isinstance(nic.backing, vim.vm.device.VirtualEthernetCard.NetworkBackingInfo)
    assert nic.backing.deviceName == "VM Network"
    assert nic.backing.network is networks["VM Network"]
    assert nic.key < 0


def test_get_network_specs_distributed_portgroup(session, template_devices):
    """Test distributed portgroups get a port connection backing."""
    specs = get_network_specs(session, template_devices, ["k8s-pg"])

    backing = specs[0].device.backing
    assert isinstance(backing, vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo)
    assert backing.port.portgroupKey == "dvportgroup-31"
    assert backing.port.switchUuid == "50 2a 7b 11"


def test_get_network_specs_multiple_networks_unique_keys(session, template_devices):
    """Test several networks are added in name order with distinct keys."""
    specs = get_network_specs(session, template_devices, ["k8s-pg", "VM Network", "k8s-pg"])

    assert len(specs) == 2
    assert session.find_network.call_args_list == [mock.call("VM Network"), mock.call("k8s-pg")]
    keys = [spec.device.key for spec in specs]
    assert len(set(keys)) == 2


def test_get_network_specs_avoids_pending_keys(session, template_devices):
    """Test new NICs do not reuse keys of devices queued earlier in the same clone."""
    controller = vim.vm.device.VirtualIDEController(key=-201)
    cdrom = vim.vm.device.VirtualCdrom(key=-202)

    specs = get_network_specs(session, template_devices, ["VM Network"], pending=[controller, cdrom])

    assert specs[0].device.key == -203


def test_get_network_specs_unknown_network(session, template_devices):
    """Test an unknown network name is reported."""
    with pytest.raises(NetworkNotFound, match="missing-net") as exc_info:
        get_network_specs(session, template_devices, ["missing-net"], instance_name="web-01")

    assert exc_info.value.instance_name == "web-01"
    assert exc_info.value.path == "missing-net"
