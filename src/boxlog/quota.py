from __future__ import annotations

import asyncio
import logging

from .db import KeyValueStore, footprint
from .errors import StorageCapacityError
from .settings import DEFAULT_QUOTA_BYTES

logger = logging.getLogger(__name__)


class QuotaGuard:
    """
    Rejects writes that would push the total stored footprint past a ceiling.

    The footprint covers every key in the substrate, not only the one being
    written. Repositories consult it on the create path only.
    """

    def __init__(self, store: KeyValueStore, limit_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self._store = store
        self.limit_bytes = limit_bytes

    async def usage(self) -> int:
        return await asyncio.to_thread(footprint, self._store)

    async def would_exceed(self, additional_bytes: int) -> bool:
        return await self.usage() + additional_bytes > self.limit_bytes

    async def check(self, key: str, additional_bytes: int) -> None:
        """Raise StorageCapacityError if adding ``additional_bytes`` crosses the ceiling."""
        projected = await self.usage() + additional_bytes
        if projected > self.limit_bytes:
            logger.warning(
                "Rejecting write to %s: %d bytes projected, limit %d",
                key,
                projected,
                self.limit_bytes,
            )
            raise StorageCapacityError(key, projected, self.limit_bytes)
