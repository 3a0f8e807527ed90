from typing import Any


DRIVER = "driver"
UI = "ui"
VM = "vm"
ERROR = "error"
DESTROY_VM = "destroy_vm"
DATASTORE = "datastore"
METADATA = "metadata"
GENERATED_DATA = "generated_data"
CANCELLED = "cancelled"
HALTED = "halted"

OVF_TASK_REF = "ovf_task_ref"
OVF_PROGRESS_MONITOR = "ovf_progress_monitor"
OVF_LEASE = "ovf_lease"

FLOPPY_PATH = "floppy_path"
UPLOADED_FLOPPY_PATH = "uploaded_floppy_path"
INSTANCE_IP = "instance_ip"
CONTENT_LIBRARY_ITEM_UUID = "content_library_item_uuid"
EXPORT_PATH = "export_path"

_MISSING = object()


class StateBag:
    """Key/value store shared by the steps of a single build."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def get_ok(self, key: str) -> tuple[Any, bool]:
        value = self._data.get(key, _MISSING)
        if value is _MISSING:
            return None, False
        return value, True

    def has(self, key: str) -> bool:
        return key in self._data

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def put_error(self, error: BaseException) -> None:
        if ERROR not in self._data:
            self._data[ERROR] = error

    def __contains__(self, key: object) -> bool:
        return key in self._data
