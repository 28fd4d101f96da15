"""
Orphan ledger for remote assets that lost their video record.

An asset becomes orphaned when its record could not be written after a
successful remote upload, or when a deleted record's remote objects could not
be removed. Neither case is rolled back synchronously: the asset is logged on
the ``app.orphans`` logger and, when the store is reachable, appended to the
``orphaned_assets`` collection, where ``scripts/reconcile_orphans.py`` picks
it up later.
"""

import logging

from datetime import UTC, datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from app.utils.logger import get_orphan_logger


logger = logging.getLogger(__name__)


class OrphanLedger:
    """Records orphaned remote assets. ``record`` never raises."""

    def __init__(self, collection: AsyncIOMotorCollection | None = None) -> None:
        self.collection = collection
        self.orphan_logger = get_orphan_logger()

    async def record(
        self,
        public_id: str,
        object_keys: list[str],
        owner_id: str | None,
        reason: str,
        request_id: str | None = None,
    ) -> bool:
        """
        Log an orphaned asset and append it to the ledger collection.

        Args:
            public_id: Public id of the orphaned asset
            object_keys: Remote object keys belonging to the asset
            owner_id: User who uploaded the asset
            reason: Why the asset was orphaned
            request_id: Id of the request that orphaned it

        Returns:
            True if the ledger entry was stored, False if only logged
        """
        self.orphan_logger.error(
            "Orphaned remote asset %s: %s",
            public_id,
            reason,
            extra={"public_id": public_id, "user_id": owner_id, "request_id": request_id},
        )

        if self.collection is None:
            return False

        entry: dict[str, Any] = {
            "public_id": public_id,
            "object_keys": object_keys,
            "owner_id": owner_id,
            "reason": reason,
            "request_id": request_id,
            "created_at": datetime.now(UTC),
            "resolved": False,
        }
        try:
            await self.collection.insert_one(entry)
        except PyMongoError as e:
            logger.warning("Could not store orphan ledger entry for %s: %s", public_id, e)
            return False
        return True
