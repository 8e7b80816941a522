from typing import Any

from pyVmomi import vim


def get_value_for_field(vm: Any, field_name: str) -> str:
    """Return the string value of a custom attribute on a VM, or "" if unset."""
    key = None
    for available_field in vm.availableField or []:
        if available_field.name == field_name:
            key = available_field.key
            break

    if key is None:
        return ""

    for value in vm.value or []:
        if value.key == key:
            if isinstance(value, vim.CustomFieldsManager.StringValue):
                return value.value
            break

    return ""
