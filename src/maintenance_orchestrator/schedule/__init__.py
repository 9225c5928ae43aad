"""Boot-time schedule registry and its durable stores."""

from maintenance_orchestrator.schedule.registry import (
    AddResult,
    BootScheduleRegistry,
    RegistryError,
    RegistryLockError,
    RegistryReadError,
    RegistryWriteError,
    RemoveResult,
    ScheduleEntry,
    ScheduleMode,
    encode_fragment,
    normalize_target,
)
from maintenance_orchestrator.schedule.stores import (
    FileRegistryStore,
    MemoryRegistryStore,
    RegistryStore,
    WindowsRegistryStore,
    create_store,
)

__all__ = [
    "AddResult",
    "BootScheduleRegistry",
    "FileRegistryStore",
    "MemoryRegistryStore",
    "RegistryError",
    "RegistryLockError",
    "RegistryReadError",
    "RegistryStore",
    "RegistryWriteError",
    "RemoveResult",
    "ScheduleEntry",
    "ScheduleMode",
    "WindowsRegistryStore",
    "create_store",
    "encode_fragment",
    "normalize_target",
]
