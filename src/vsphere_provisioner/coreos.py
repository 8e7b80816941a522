"""
Userdata delivery for CoreOS-family guests through vApp properties.

The CoreOS/Flatcar OVA ships with guestinfo properties for Ignition or
cloud-config data. They already exist in the template, so they are edited
in place using their existing keys.
"""

import base64
import logging
from typing import Any, Dict, List

from pyVmomi import vim

from vsphere_provisioner.errors import IncompleteTemplate, MissingGuestSchema

logger = logging.getLogger(__name__)

COREOS_USERDATA_KEY = "guestinfo.coreos.config.data"
COREOS_USERDATA_ENCODING_KEY = "guestinfo.coreos.config.data.encoding"

USERDATA_ENCODING = "base64"


def build_coreos_properties(template_vm: Any, userdata: str) -> List[vim.vApp.PropertySpec]:
    """
    Build vApp property edits carrying base64 userdata.

    Args:
        template_vm: Template VirtualMachine
        userdata: Raw userdata

    Returns:
        Exactly two edit specs, one per required property

    Raises:
        MissingGuestSchema: If the template has no vApp configuration
        IncompleteTemplate: If either required property is missing
    """
    userdata_base64 = base64.b64encode(userdata.encode("utf-8")).decode("ascii")
    values: Dict[str, str] = {
        COREOS_USERDATA_KEY: userdata_base64,
        COREOS_USERDATA_ENCODING_KEY: USERDATA_ENCODING,
    }

    try:
        vapp_config = template_vm.config.vAppConfig
    except Exception as e:
        raise MissingGuestSchema("failed to extract vApp properties for CoreOS", cause=e) from e

    if vapp_config is None:
        raise MissingGuestSchema("no vApp config found in template")

    specs: List[vim.vApp.PropertySpec] = []
    for item in vapp_config.property or []:
        if item.id not in values:
            continue
        specs.append(
            vim.vApp.PropertySpec(
                operation=vim.option.ArrayUpdateSpec.Operation.edit,
                info=vim.vApp.PropertyInfo(key=item.key, id=item.id, value=values[item.id]),
            )
        )

    found = {spec.info.id for spec in specs}
    missing = [key for key in values if key not in found]
    if missing:
        if len(missing) == len(values):
            reason = "template has none of the required vApp properties"
        else:
            reason = "template is missing a required vApp property"
        raise IncompleteTemplate(
            f"{reason}. Required options: {COREOS_USERDATA_KEY!r}, {COREOS_USERDATA_ENCODING_KEY!r}; "
            f"missing: {', '.join(missing)}",
            missing=missing,
        )

    logger.debug(f"Built {len(specs)} vApp property edits for CoreOS userdata")
    return specs
