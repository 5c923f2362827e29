"""Persistence: storage backends, write coalescing, repository, bundles."""

from .storage import JsonFileStorage, MemoryStorage, Storage
from .sync import ChangeChannel, ChangeEvent, ChangeKind, Scheduler
from .repository import StepRepository
from .bundle import ImportResult, export_bundle, export_csv_report, import_bundle

__all__ = [
    "ChangeChannel",
    "ChangeEvent",
    "ChangeKind",
    "ImportResult",
    "JsonFileStorage",
    "MemoryStorage",
    "Scheduler",
    "StepRepository",
    "Storage",
    "export_bundle",
    "export_csv_report",
    "import_bundle",
]
