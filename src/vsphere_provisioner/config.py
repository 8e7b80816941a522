"""
Configuration for vSphere template cloning.
Loaded from environment variables (optionally via a .env file).
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class ProviderConfig:
    """Everything needed to clone one template into one VM."""

    # Endpoint and credentials
    vsphere_url: str = ""
    username: str = ""
    password: str = ""
    allow_insecure: bool = False

    # Placement
    datacenter: str = ""
    datastore: str = ""
    folder: str = ""
    template_vm_name: str = ""

    # Sizing
    cpus: int = 2
    memory_mb: int = 2048
    disk_size_gb: Optional[int] = None

    # Networking
    vm_net_name: str = ""
    networks: List[str] = field(default_factory=list)

    # Seconds between clone task polls
    task_poll_interval: float = 2.0

    @classmethod
    def from_environment(cls) -> "ProviderConfig":
        """Load configuration from VSPHERE_* environment variables."""
        load_dotenv()

        disk_size = os.getenv("VSPHERE_DISK_SIZE_GB", "").strip()
        networks_raw = os.getenv("VSPHERE_NETWORKS", "")

        return cls(
            vsphere_url=os.getenv("VSPHERE_URL", ""),
            username=os.getenv("VSPHERE_USERNAME", ""),
            password=os.getenv("VSPHERE_PASSWORD", ""),
            allow_insecure=_env_bool("VSPHERE_ALLOW_INSECURE"),
            datacenter=os.getenv("VSPHERE_DATACENTER", ""),
            datastore=os.getenv("VSPHERE_DATASTORE", ""),
            folder=os.getenv("VSPHERE_FOLDER", ""),
            template_vm_name=os.getenv("VSPHERE_TEMPLATE_VM", ""),
            cpus=int(os.getenv("VSPHERE_CPUS", "2")),
            memory_mb=int(os.getenv("VSPHERE_MEMORY_MB", "2048")),
            disk_size_gb=int(disk_size) if disk_size else None,
            vm_net_name=os.getenv("VSPHERE_VM_NET_NAME", "").strip(),
            networks=[n.strip() for n in networks_raw.split(",") if n.strip()],
            task_poll_interval=float(os.getenv("VSPHERE_TASK_POLL_INTERVAL", "2.0")),
        )

    def validate(self) -> None:
        """Validate configuration settings."""
        if not self.vsphere_url:
            raise ValueError("VSPHERE_URL must be set")

        if not self.username or not self.password:
            raise ValueError("VSPHERE_USERNAME and VSPHERE_PASSWORD must be set")

        if not self.datacenter:
            raise ValueError("VSPHERE_DATACENTER must be set")

        if not self.datastore:
            raise ValueError("VSPHERE_DATASTORE must be set")

        if not self.template_vm_name:
            raise ValueError("VSPHERE_TEMPLATE_VM must be set")

        if self.cpus <= 0:
            raise ValueError(f"Invalid CPU count {self.cpus}, must be at least 1")

        if self.memory_mb <= 0:
            raise ValueError(f"Invalid memory size {self.memory_mb}MB, must be positive")

        if self.disk_size_gb is not None and self.disk_size_gb <= 0:
            raise ValueError(f"Invalid disk size {self.disk_size_gb}GB, must be positive")

        if self.task_poll_interval <= 0:
            raise ValueError(f"Invalid task poll interval {self.task_poll_interval}s")

    def network_names(self) -> List[str]:
        """Primary and extra networks as a sorted, de-duplicated list."""
        names = set(self.networks)
        names.add(self.vm_net_name)
        names.discard("")
        return sorted(names)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display, with the password masked."""
        return {
            "vsphere_url": self.vsphere_url,
            "username": self.username,
            "password": "********" if self.password else "",
            "allow_insecure": self.allow_insecure,
            "datacenter": self.datacenter,
            "datastore": self.datastore,
            "folder": self.folder,
            "template_vm_name": self.template_vm_name,
            "cpus": self.cpus,
            "memory_mb": self.memory_mb,
            "disk_size_gb": self.disk_size_gb,
            "networks": self.network_names(),
            "task_poll_interval": self.task_poll_interval,
        }
