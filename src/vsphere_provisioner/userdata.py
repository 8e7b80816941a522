"""
Userdata delivery through a cloud-init NoCloud ISO.

The ISO carries two files, user-data and meta-data, under the volume label
"cidata". It is built locally with genisoimage or mkisofs, uploaded to
"<name>/cloud-init.iso" on the datastore and attached to the clone as a
CD-ROM. The same datastore path is used to delete it on teardown, so it
must not change.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from pyVmomi import vim

from vsphere_provisioner.errors import (
    DeleteFailure,
    ToolExecutionFailure,
    ToolingUnavailable,
    UploadFailure,
    WriteFailure,
    handle_error,
)
from vsphere_provisioner.session import wait_for_task

logger = logging.getLogger(__name__)

LOCAL_TEMP_DIR = "/tmp"

USERDATA_FILENAME = "user-data"
METADATA_FILENAME = "meta-data"
ISO_VOLUME_LABEL = "cidata"

METADATA_TEMPLATE = "instance-id: {instance_id}\n\tlocal-hostname: {hostname}"

ISO_TOOL_TIMEOUT = 60


def render_metadata(name: str) -> str:
    """Render the meta-data payload for an instance."""
    return METADATA_TEMPLATE.format(instance_id=name, hostname=name)


def datastore_iso_filename(name: str) -> str:
    """Datastore-relative path of the userdata ISO for an instance."""
    return f"{name}/cloud-init.iso"


class UserdataImageBuilder:
    """Builds a local cloud-init ISO from userdata text."""

    def __init__(self, temp_dir: str = LOCAL_TEMP_DIR):
        self.temp_dir = temp_dir

    def iso_path(self, name: str) -> str:
        """Local path of the ISO built for an instance."""
        return os.path.join(self.temp_dir, f"{name}.iso")

    def iso_command(self, iso_path: str, source_dir: str) -> List[str]:
        """
        Build the ISO authoring command line, preferring genisoimage.

        Raises:
            ToolingUnavailable: If neither genisoimage nor mkisofs is on PATH
        """
        if shutil.which("genisoimage"):
            return ["genisoimage", "-o", iso_path, "-volid", ISO_VOLUME_LABEL, "-joliet", "-rock", source_dir]
        if shutil.which("mkisofs"):
            return ["mkisofs", "-o", iso_path, "-V", ISO_VOLUME_LABEL, "-J", "-R", source_dir]
        raise ToolingUnavailable(
            "system is missing genisoimage or mkisofs, can't generate userdata iso without it"
        )

    def build(self, userdata: str, name: str) -> str:
        """
        Build the userdata ISO for an instance.

        The scratch directory holding user-data and meta-data is removed on
        every exit path. The returned ISO belongs to the caller.

        Args:
            userdata: Raw userdata, written verbatim
            name: Instance name, used as instance-id and local-hostname

        Returns:
            Local path of the generated ISO

        Raises:
            ToolingUnavailable: If no ISO authoring tool is installed
            WriteFailure: If the scratch directory or a payload file cannot be written
            ToolExecutionFailure: If the ISO authoring tool fails
        """
        try:
            scratch_dir = tempfile.mkdtemp(prefix=name, dir=self.temp_dir)
        except OSError as e:
            raise WriteFailure(
                "failed to create local temp directory for userdata",
                instance_name=name,
                path=self.temp_dir,
                cause=e,
            ) from e

        try:
            iso_path = self.iso_path(name)
            command = self.iso_command(iso_path, scratch_dir)

            self._write_payload(Path(scratch_dir) / USERDATA_FILENAME, userdata, name)
            self._write_payload(Path(scratch_dir) / METADATA_FILENAME, render_metadata(name), name)

            self._run(command, name)
            logger.debug(f"Generated userdata ISO {iso_path} with {command[0]}")
            return iso_path
        finally:
            try:
                shutil.rmtree(scratch_dir)
            except OSError as e:
                handle_error(
                    WriteFailure(
                        "error cleaning up local userdata tempdir",
                        instance_name=name,
                        path=scratch_dir,
                        cause=e,
                    )
                )

    @staticmethod
    def _write_payload(path: Path, content: str, name: str) -> None:
        try:
            path.write_bytes(content.encode("utf-8"))
        except OSError as e:
            raise WriteFailure(
                f"failed to locally write {path.name} file",
                instance_name=name,
                path=str(path),
                cause=e,
            ) from e

    @staticmethod
    def _run(command: List[str], name: str) -> None:
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=ISO_TOOL_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ToolExecutionFailure(
                f"error executing command `{' '.join(command)}`",
                command=command,
                instance_name=name,
                cause=e,
            ) from e

        if result.returncode != 0:
            raise ToolExecutionFailure(
                f"error executing command `{' '.join(command)}`: exit code {result.returncode}, "
                f"output: `{result.stdout}`",
                command=command,
                output=result.stdout or "",
                instance_name=name,
            )


class UserdataTransport:
    """Moves userdata ISOs to and from the configured datastore."""

    def __init__(self, session: Any):
        self.session = session

    def upload(self, image_path: str, name: str) -> str:
        """
        Upload a local ISO to "<name>/cloud-init.iso".

        Returns:
            Datastore path usable as a CD-ROM backing, e.g.
            "[datastore1] node-1/cloud-init.iso"
        """
        remote_path = datastore_iso_filename(name)
        logger.debug(f"Uploading userdata ISO to datastore {remote_path}...")
        try:
            self.session.upload_file(image_path, remote_path)
        except Exception as e:
            raise UploadFailure("failed to upload ISO", instance_name=name, path=remote_path, cause=e) from e
        logger.debug(f"Successfully uploaded userdata ISO to {remote_path}")

        return self.session.datastore_path(remote_path)

    async def remove(self, name: str, poll_interval: float = 2.0) -> None:
        """
        Delete the userdata ISO of an instance.

        A missing ISO is not an error: the instance and its ISO may already
        be gone when teardown runs.
        """
        remote_path = datastore_iso_filename(name)
        try:
            task = self.session.delete_datastore_file(remote_path)
            await wait_for_task(task, poll_interval, instance_name=name, error_cls=DeleteFailure)
        except Exception as e:
            fault = e.cause if isinstance(e, DeleteFailure) else e
            if isinstance(fault, vim.fault.FileNotFound):
                logger.debug(f"Userdata ISO {remote_path} already absent")
                return
            raise DeleteFailure(
                f"failed to delete userdata ISO of deleted machine {name}",
                instance_name=name,
                path=remote_path,
                cause=fault,
            ) from e
        logger.info(f"Deleted userdata ISO {remote_path}")


def generate_and_upload_userdata_iso(
    session: Any,
    userdata: str,
    name: str,
    builder: Optional[UserdataImageBuilder] = None,
) -> str:
    """Build the userdata ISO, upload it and delete the local copy.

    Returns:
        Datastore path of the uploaded ISO
    """
    builder = builder or UserdataImageBuilder()
    iso_path = builder.build(userdata, name)
    try:
        return UserdataTransport(session).upload(iso_path, name)
    finally:
        try:
            os.remove(iso_path)
        except OSError as e:
            handle_error(
                WriteFailure("error removing local userdata ISO", instance_name=name, path=iso_path, cause=e)
            )
