"""Connection to vCenter plus the inventory and datastore helpers the provisioner needs."""

import asyncio
import logging
import ssl
from typing import Any, Dict, List, Optional, Type
from urllib.parse import urlparse

import requests
from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from vsphere_provisioner.config import ProviderConfig
from vsphere_provisioner.errors import CloneTaskFailure, ProvisioningError

logger = logging.getLogger(__name__)

SESSION_COOKIE = "vmware_soap_session"


async def wait_for_task(
    task: Any,
    poll_interval: float = 2.0,
    instance_name: Optional[str] = None,
    error_cls: Type[ProvisioningError] = CloneTaskFailure,
) -> Any:
    """
    Wait for a vSphere task without blocking the event loop.

    Cancelling the waiting coroutine stops the wait only; the task keeps
    running in vCenter.

    Raises:
        error_cls: If the task ends in the error state, with the task fault as cause
    """
    while task.info.state in (vim.TaskInfo.State.queued, vim.TaskInfo.State.running):
        await asyncio.sleep(poll_interval)

    if task.info.state == vim.TaskInfo.State.error:
        raise error_cls("error when waiting for result of task", instance_name=instance_name, cause=task.info.error)

    return task.info.result


class Session:
    """A logged-in vCenter session bound to one datacenter and datastore."""

    def __init__(self, service_instance: Any, datacenter: Any, datastore: Any, host: str, verify_ssl: bool = True):
        self.service_instance = service_instance
        self.content = service_instance.RetrieveContent()
        self.datacenter = datacenter
        self.datastore = datastore
        self.host = host
        self.verify_ssl = verify_ssl

    @classmethod
    def connect(cls, config: ProviderConfig) -> "Session":
        """
        Log in to vCenter and resolve the configured datacenter and datastore.

        Raises:
            ValueError: If the datacenter or datastore does not exist
        """
        parsed = urlparse(config.vsphere_url if "://" in config.vsphere_url else f"https://{config.vsphere_url}")
        host = parsed.hostname or config.vsphere_url
        port = parsed.port or 443

        ssl_context = None
        if config.allow_insecure:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        logger.info(f"Connecting to vCenter {host}:{port} as {config.username}")
        si = SmartConnect(host=host, port=port, user=config.username, pwd=config.password, sslContext=ssl_context)

        try:
            content = si.RetrieveContent()
            datacenter = next(
                (dc for dc in content.rootFolder.childEntity
                 if isinstance(dc, vim.Datacenter) and dc.name == config.datacenter),
                None,
            )
            if datacenter is None:
                raise ValueError(f"Datacenter {config.datacenter!r} not found")

            datastore = next((ds for ds in datacenter.datastore if ds.name == config.datastore), None)
            if datastore is None:
                raise ValueError(f"Datastore {config.datastore!r} not found in datacenter {config.datacenter!r}")
        except Exception:
            Disconnect(si)
            raise

        return cls(si, datacenter, datastore, host=f"{host}:{port}", verify_ssl=not config.allow_insecure)

    def close(self) -> None:
        Disconnect(self.service_instance)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # === INVENTORY ===

    def _objects(self, vimtype: Type) -> List[Any]:
        container = self.content.viewManager.CreateContainerView(self.datacenter, [vimtype], True)
        try:
            return list(container.view)
        finally:
            container.Destroy()

    def find_vm(self, name: str) -> Optional[Any]:
        """Find a VM (or template) in the datacenter by name."""
        return next((vm for vm in self._objects(vim.VirtualMachine) if vm.name == name), None)

    def find_network(self, name: str) -> Optional[Any]:
        """Find a standard network or distributed portgroup by name."""
        return next((net for net in self.datacenter.network if net.name == name), None)

    def find_folder(self, path: str) -> Optional[Any]:
        """
        Resolve a VM folder by inventory path.

        Accepts "", "a/b", or a full path such as "/dc1/vm/a/b". An empty path
        is the datacenter's root VM folder.
        """
        parts = [part for part in path.strip("/").split("/") if part]
        prefix = [self.datacenter.name, "vm"]
        if parts[:2] == prefix:
            parts = parts[2:]

        folder = self.datacenter.vmFolder
        for part in parts:
            folder = next(
                (child for child in folder.childEntity if isinstance(child, vim.Folder) and child.name == part),
                None,
            )
            if folder is None:
                return None
        return folder

    # === DATASTORE ===

    def datastore_path(self, path: str) -> str:
        """Full datastore path, e.g. "[datastore1] node-1/cloud-init.iso"."""
        return f"[{self.datastore.name}] {path}"

    def _session_cookie(self) -> Dict[str, str]:
        raw = self.service_instance._stub.cookie
        value = raw.split("=", 1)[1].split(";", 1)[0].strip().strip('"')
        return {SESSION_COOKIE: value}

    def upload_file(self, local_path: str, remote_path: str) -> None:
        """Upload a local file to the datastore through the /folder HTTP endpoint."""
        url = f"https://{self.host}/folder/{remote_path}"
        params = {"dcPath": self.datacenter.name, "dsName": self.datastore.name}
        with open(local_path, "rb") as data:
            response = requests.put(
                url,
                params=params,
                data=data,
                headers={"Content-Type": "application/octet-stream"},
                cookies=self._session_cookie(),
                verify=self.verify_ssl,
            )
        response.raise_for_status()

    def delete_datastore_file(self, remote_path: str) -> Any:
        """Start deleting a datastore file and return the vSphere task."""
        return self.content.fileManager.DeleteDatastoreFile_Task(
            name=self.datastore_path(remote_path),
            datacenter=self.datacenter,
        )
