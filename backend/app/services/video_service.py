"""
Video Record Service for NaviStream

Owns the ``videos`` collection. Writes the canonical VideoRecord once a remote
asset exists, and implements the operations that mutate it afterwards. Every
mutation is one atomic document update keyed by id:

- views only grow (``$inc``)
- likes toggle: ``$pull`` when the user is present, ``$addToSet`` otherwise,
  so ``liked_by`` never holds a user twice and liking twice restores the
  original state
- comments are appended with ``$push`` and removed only by their author

Update and delete are restricted to the owner. A non-owner gets the same
VideoNotFoundError as a missing id. Delete removes the record before the
remote objects; if the remote delete fails the asset goes to the orphan ledger,
so a record never points at a missing asset.
"""

import logging

from datetime import UTC, datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from app.core.errors import CommentNotFoundError, PersistenceFailure, VideoNotFoundError
from app.models.video import Comment, RemoteAsset, UploadRequest, VideoRecord, VideoUpdate
from app.services.orphan_ledger import OrphanLedger
from app.services.remote_asset_service import RemoteAssetService
from app.services.storage_service import StorageServiceError


logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


class VideoService:
    """
    Video record persistence and record operations.

    Attributes:
        collection: Motor collection holding video documents
        remote_assets: Used by ``delete`` to remove the stored objects
        orphans: Ledger for assets whose remote delete failed
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        remote_asset_service: RemoteAssetService | None = None,
        orphan_ledger: OrphanLedger | None = None,
    ) -> None:
        self.collection = collection
        self.remote_assets = remote_asset_service
        self.orphans = orphan_ledger or OrphanLedger()
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # Metadata Recorder
    # =========================================================================

    async def record(
        self,
        asset: RemoteAsset,
        request: UploadRequest,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> VideoRecord:
        """
        Write a new record (no views, likes or comments) for an uploaded asset.

        Raises:
            PersistenceFailure: If the document could not be inserted
        """
        log = log or self.logger
        record = VideoRecord.from_upload(request, asset)
        try:
            await self.collection.insert_one(record.to_document())
        except PyMongoError as e:
            log.error("Failed to insert video record for %s: %s", asset.public_id, e)
            raise PersistenceFailure(details=str(e), public_id=asset.public_id) from e

        log.info("Recorded video %s", record.id)
        return record

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, video_id: str) -> VideoRecord:
        document = await self.collection.find_one({"_id": video_id})
        if document is None:
            raise VideoNotFoundError(video_id)
        return VideoRecord.model_validate(document)

    async def list_by_owner(self, owner_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[VideoRecord]:
        """Videos uploaded by ``owner_id``, newest first."""
        return await self._find({"owner_id": owner_id}, limit)

    async def list_liked_by(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[VideoRecord]:
        """Videos ``user_id`` currently likes, newest first."""
        return await self._find({"liked_by": user_id}, limit)

    async def _find(self, query: dict[str, Any], limit: int) -> list[VideoRecord]:
        cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(limit)
        return [VideoRecord.model_validate(document) async for document in cursor]

    # =========================================================================
    # Record operations
    # =========================================================================

    async def increment_view(self, video_id: str) -> int:
        """Add one view and return the new count."""
        document = await self.collection.find_one_and_update(
            {"_id": video_id},
            {"$inc": {"views": 1}},
            projection={"views": 1},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise VideoNotFoundError(video_id)
        return int(document["views"])

    async def toggle_like(self, video_id: str, user_id: str) -> tuple[int, bool]:
        """
        Like the video if ``user_id`` does not like it yet, unlike it otherwise.

        Returns:
            Tuple of (likes, is_liked) after the toggle
        """
        now = datetime.now(UTC)
        document = await self.collection.find_one_and_update(
            {"_id": video_id, "liked_by": user_id},
            {"$pull": {"liked_by": user_id}, "$set": {"updated_at": now}},
            projection={"liked_by": 1},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            document = await self.collection.find_one_and_update(
                {"_id": video_id},
                {"$addToSet": {"liked_by": user_id}, "$set": {"updated_at": now}},
                projection={"liked_by": 1},
                return_document=ReturnDocument.AFTER,
            )
        if document is None:
            raise VideoNotFoundError(video_id)

        liked_by = document.get("liked_by") or []
        return len(liked_by), user_id in liked_by

    async def add_comment(self, video_id: str, author_id: str, text: str) -> Comment:
        comment = Comment(author_id=author_id, text=text)
        result = await self.collection.update_one(
            {"_id": video_id},
            {
                "$push": {"comments": comment.model_dump()},
                "$set": {"updated_at": datetime.now(UTC)},
            },
        )
        if result.matched_count == 0:
            raise VideoNotFoundError(video_id)
        return comment

    async def remove_comment(self, video_id: str, comment_id: str, user_id: str) -> None:
        """
        Remove a comment written by ``user_id``.

        Raises:
            VideoNotFoundError: If the video does not exist
            CommentNotFoundError: If the comment is missing or has another author
        """
        result = await self.collection.update_one(
            {
                "_id": video_id,
                "comments": {"$elemMatch": {"id": comment_id, "author_id": user_id}},
            },
            {
                "$pull": {"comments": {"id": comment_id, "author_id": user_id}},
                "$set": {"updated_at": datetime.now(UTC)},
            },
        )
        if result.modified_count:
            return
        if await self.collection.count_documents({"_id": video_id}, limit=1) == 0:
            raise VideoNotFoundError(video_id)
        raise CommentNotFoundError(comment_id)

    async def update_details(self, video_id: str, owner_id: str, update: VideoUpdate) -> VideoRecord:
        """Apply title/description/category changes to a video owned by ``owner_id``."""
        changes = update.changes()
        if not changes:
            return await self._get_owned(video_id, owner_id)

        changes["updated_at"] = datetime.now(UTC)
        document = await self.collection.find_one_and_update(
            {"_id": video_id, "owner_id": owner_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise VideoNotFoundError(video_id)
        self.logger.info("Updated video %s fields %s", video_id, sorted(changes))
        return VideoRecord.model_validate(document)

    async def delete(self, video_id: str, owner_id: str, request_id: str | None = None) -> VideoRecord:
        """
        Delete a video owned by ``owner_id`` together with its remote asset.

        Returns:
            The deleted record
        """
        document = await self.collection.find_one_and_delete({"_id": video_id, "owner_id": owner_id})
        if document is None:
            raise VideoNotFoundError(video_id)
        record = VideoRecord.model_validate(document)

        if self.remote_assets is not None:
            try:
                await self.remote_assets.delete(record.public_id, record.object_key)
            except StorageServiceError as e:
                await self.orphans.record(
                    public_id=record.public_id,
                    object_keys=self.remote_assets.asset_keys(record.public_id, record.object_key),
                    owner_id=owner_id,
                    reason=f"Remote delete failed after record deletion: {e}",
                    request_id=request_id,
                )

        self.logger.info("Deleted video %s", video_id)
        return record

    async def _get_owned(self, video_id: str, owner_id: str) -> VideoRecord:
        document = await self.collection.find_one({"_id": video_id, "owner_id": owner_id})
        if document is None:
            raise VideoNotFoundError(video_id)
        return VideoRecord.model_validate(document)
