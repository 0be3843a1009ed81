"""
Exceptions raised by the storage layer.

Only capacity and pre-write serialization failures are raised. Missing ids
are reported through None/False return values and data problems through
StorageService.validate().
"""


class StorageError(Exception):
    """Base class for storage failures."""


class StorageCapacityError(StorageError):
    """
    Raised when a create would push the stored footprint past the quota.

    The collection is left unchanged when this is raised.
    """

    def __init__(self, key: str, projected_bytes: int, limit_bytes: int):
        self.key = key
        self.projected_bytes = projected_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Storage quota exceeded writing {key!r}: "
            f"{projected_bytes} bytes projected, limit is {limit_bytes} bytes"
        )


class StorageCorruptionError(StorageError):
    """Raised when a collection cannot be serialized before it is written."""

    def __init__(self, key: str, details=None):
        self.key = key
        self.details = details or "Collection could not be serialized."
        super().__init__(f"Corrupt collection {key!r}: {self.details}")
