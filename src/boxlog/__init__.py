"""
Local persistence for Events and Logs on top of a whole-value key-value store.

Typical use:

    service = await get_storage_service()
    event = await service.events.create({"title": "Focus", "start_date": "2024-01-10T09:00:00Z"})
"""

from .errors import StorageCapacityError, StorageCorruptionError, StorageError
from .service import SCHEMA_VERSION, StorageService, get_storage_service

__all__ = [
    "SCHEMA_VERSION",
    "StorageCapacityError",
    "StorageCorruptionError",
    "StorageError",
    "StorageService",
    "get_storage_service",
]
