"""Network adapter specs: swap the template's NICs for one vmxnet3 per network."""

import logging
from typing import Any, List, Optional, Sequence

from pyVmomi import vim

from vsphere_provisioner.devices import DeviceList, new_key, remove_devices_of_type
from vsphere_provisioner.errors import NetworkNotFound

logger = logging.getLogger(__name__)


def _network_backing(network: Any, name: str) -> vim.vm.device.VirtualDevice.BackingInfo:
    if isinstance(network, vim.dvs.DistributedVirtualPortgroup):
        return vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo(
            port=vim.dvs.PortConnection(
                portgroupKey=network.key,
                switchUuid=network.config.distributedVirtualSwitch.uuid,
            )
        )
    return vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(deviceName=name, network=network)


def get_network_specs(
    session: Any,
    devices: DeviceList,
    network_names: Sequence[str],
    pending: DeviceList = (),
    instance_name: Optional[str] = None,
) -> List[vim.vm.device.VirtualDeviceSpec]:
    """
    Remove every ethernet card of the template and add one vmxnet3 adapter
    per network, in network name order.

    Args:
        session: Connected Session used to resolve network names
        devices: Current template device list
        network_names: Networks to attach
        pending: Devices already queued for add in the same clone, whose
            keys must not be reused
        instance_name: VM the adapters belong to, for error context

    Returns:
        Removes for the template NICs followed by one add per network

    Raises:
        NetworkNotFound: If a network name does not resolve
    """
    specs = remove_devices_of_type(devices, vim.vm.device.VirtualEthernetCard)
    added: List[vim.vm.device.VirtualDevice] = list(pending)

    for name in sorted(set(network_names)):
        network = session.find_network(name)
        if network is None:
            raise NetworkNotFound(f"network {name!r} not found", instance_name=instance_name, path=name)

        nic = vim.vm.device.VirtualVmxnet3()
        nic.key = new_key(list(devices) + added)
        nic.addressType = "generated"
        nic.backing = _network_backing(network, name)
        nic.connectable = vim.vm.device.VirtualDevice.ConnectInfo(
            allowGuestControl=True,
            startConnected=True,
            connected=True,
        )
        added.append(nic)
        specs.append(
            vim.vm.device.VirtualDeviceSpec(
                operation=vim.vm.device.VirtualDeviceSpec.Operation.add,
                device=nic,
            )
        )
        logger.debug(f"Attaching network {name!r} as device {nic.key}")

    return specs
