"""Exceptions raised while provisioning, plus the side-channel error reporter."""

import logging
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """Base exception for provisioning errors.

    Carries the instance name, the path involved (inventory path, local file,
    datastore path) and the underlying cause, so a failure can be diagnosed
    without re-running the clone.
    """

    def __init__(
        self,
        message: str,
        instance_name: Optional[str] = None,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.instance_name = instance_name
        self.path = path
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class TemplateNotFound(ProvisioningError):
    """Raised when the template VM cannot be found."""

    pass


class FolderNotFound(ProvisioningError):
    """Raised when the target VM folder cannot be found."""

    pass


class DeviceEnumerationFailure(ProvisioningError):
    """Raised when the template's device list cannot be read."""

    pass


class DeviceSpecFailure(ProvisioningError):
    """Raised when a device change cannot be built."""

    pass


class NetworkNotFound(DeviceSpecFailure):
    """Raised when a configured network does not exist in the datacenter."""

    pass


class ToolingUnavailable(ProvisioningError):
    """Raised when neither genisoimage nor mkisofs is installed."""

    pass


class WriteFailure(ProvisioningError):
    """Raised when a userdata payload file cannot be written."""

    pass


class ToolExecutionFailure(ProvisioningError):
    """Raised when the ISO authoring tool exits non-zero."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        output: str = "",
        **kwargs,
    ) -> None:
        self.command = list(command)
        self.output = output
        super().__init__(message, **kwargs)


class UploadFailure(ProvisioningError):
    """Raised when the userdata ISO cannot be uploaded to the datastore."""

    pass


class MissingGuestSchema(ProvisioningError):
    """Raised when the template has no vApp configuration at all."""

    pass


class IncompleteTemplate(ProvisioningError):
    """Raised when the template lacks one of the required vApp properties."""

    def __init__(self, message: str, missing: Sequence[str] = (), **kwargs) -> None:
        self.missing = list(missing)
        super().__init__(message, **kwargs)


class CloneSubmitFailure(ProvisioningError):
    """Raised when vCenter rejects the clone request."""

    pass


class CloneTaskFailure(ProvisioningError):
    """Raised when the clone task finishes in the error state."""

    pass


class PostCloneLookupFailure(ProvisioningError):
    """Raised when the clone succeeded but the new VM cannot be found by name."""

    pass


class DeleteFailure(ProvisioningError):
    """Raised when removing a VM or its userdata ISO fails."""

    pass


ErrorHandler = Callable[[BaseException], None]

# Called for errors that must be reported but must not fail the caller.
error_handlers: List[ErrorHandler] = []


def handle_error(err: BaseException) -> None:
    """Report an error that should not abort the current operation."""
    logger.error(f"Unhandled error: {err}")
    for handler in list(error_handlers):
        try:
            handler(err)
        except Exception as handler_error:
            logger.error(f"Error handler {handler!r} failed: {handler_error}")
