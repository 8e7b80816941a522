"""
Command-line interface for cloning vSphere templates into cluster nodes.
"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.json import JSON
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from vsphere_provisioner.config import ProviderConfig
from vsphere_provisioner.errors import ProvisioningError
from vsphere_provisioner.metadata import get_value_for_field
from vsphere_provisioner.session import Session
from vsphere_provisioner.vm import GuestOS, create_cloned_vm, delete_cloned_vm, injection_strategy

app = typer.Typer(
    name="vsphere-provision",
    help="Clone vSphere templates into cluster nodes",
    add_completion=False,
)
console = Console()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
)


def _load_config() -> ProviderConfig:
    config = ProviderConfig.from_environment()
    try:
        config.validate()
    except ValueError as e:
        console.print(f"❌ Invalid configuration: {e}")
        raise typer.Exit(1)
    return config


@app.command("config")
def show_config() -> None:
    """Show the resolved configuration."""
    config = ProviderConfig.from_environment()
    console.print(JSON(json.dumps(config.to_dict(), indent=2)))


@app.command("create")
def create_vm(
    name: str = typer.Argument(..., help="Name of the new VM"),
    guest_os: GuestOS = typer.Option(GuestOS.UBUNTU, "--os", help="Guest OS of the template"),
    userdata_file: Path = typer.Option(..., exists=True, dir_okay=False, help="Userdata file to inject"),
) -> None:
    """Clone the configured template into a new VM."""
    config = _load_config()
    userdata = userdata_file.read_text()

    async def _create_vm() -> None:
        with Session.connect(config) as session:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task(f"Cloning {config.template_vm_name} to {name}...", total=None)
                vm = await create_cloned_vm(name, config, session, guest_os, userdata)
                progress.update(task, completed=True)

            console.print(f"✅ Successfully created VM: {name}")

            table = Table(title=f"VM Details: {name}")
            table.add_column("Property", style="cyan")
            table.add_column("Value", style="green")

            table.add_row("Name", name)
            table.add_row("Template", config.template_vm_name)
            table.add_row("Folder", config.folder or "/")
            table.add_row("Datastore", config.datastore)
            table.add_row("CPUs", str(config.cpus))
            table.add_row("Memory", f"{config.memory_mb} MB")
            table.add_row("Disk", f"{config.disk_size_gb} GB" if config.disk_size_gb else "template")
            table.add_row("Networks", ", ".join(config.network_names()) or "template")
            table.add_row("Userdata", injection_strategy(guest_os).value)
            table.add_row("MoRef", str(getattr(vm, "_moId", "")))

            console.print(table)

    try:
        asyncio.run(_create_vm())
    except ProvisioningError as e:
        console.print(f"❌ Failed to create VM {name}: {e}")
        raise typer.Exit(1)


@app.command("delete")
def delete_vm(name: str = typer.Argument(..., help="Name of the VM to delete")) -> None:
    """Destroy a VM and remove its userdata ISO."""
    config = _load_config()

    async def _delete_vm() -> None:
        with Session.connect(config) as session:
            existed = await delete_cloned_vm(name, session, config.task_poll_interval)
        if existed:
            console.print(f"✅ Deleted VM: {name}")
        else:
            console.print(f"ℹ️  VM {name} did not exist, userdata ISO cleaned up")

    try:
        asyncio.run(_delete_vm())
    except ProvisioningError as e:
        console.print(f"❌ Failed to delete VM {name}: {e}")
        raise typer.Exit(1)


@app.command("field")
def show_field(
    name: str = typer.Argument(..., help="VM name"),
    field_name: str = typer.Argument(..., help="Custom attribute name"),
) -> None:
    """Print a custom attribute of a VM."""
    config = _load_config()

    with Session.connect(config) as session:
        vm = session.find_vm(name)
        if vm is None:
            console.print(f"❌ VM {name} not found")
            raise typer.Exit(1)
        console.print(get_value_for_field(vm, field_name))


if __name__ == "__main__":
    app()
