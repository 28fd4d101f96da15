"""
NaviStream MongoDB Database Client Module

Async MongoDB connection management for the video metadata store using Motor:
- Connection pooling with configurable pool sizes
- Bounded connection retry at startup
- Health checks using the MongoDB ping command
- Accessors for the ``videos`` and ``orphaned_assets`` collections
- Index creation for owner listings, liked-by lookups and orphan sweeps
- Startup/shutdown lifecycle helpers for the FastAPI lifespan
"""

import asyncio
import logging

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from app.config import Settings, get_settings


logger = logging.getLogger(__name__)

VIDEOS_COLLECTION = "videos"
ORPHANED_ASSETS_COLLECTION = "orphaned_assets"

CONNECT_MAX_ATTEMPTS = 3

# Shared with scripts/init_db.py
COLLECTION_INDEXES: dict[str, list[IndexModel]] = {
    VIDEOS_COLLECTION: [
        IndexModel([("owner_id", ASCENDING), ("created_at", DESCENDING)], name="owner_id_1_created_at_-1"),
        IndexModel([("created_at", ASCENDING)], name="created_at_1"),
        IndexModel([("category", ASCENDING)], name="category_1"),
        IndexModel([("liked_by", ASCENDING)], name="liked_by_1"),
        IndexModel([("public_id", ASCENDING)], name="public_id_1", unique=True),
    ],
    ORPHANED_ASSETS_COLLECTION: [
        IndexModel([("public_id", ASCENDING)], name="public_id_1"),
        IndexModel([("resolved", ASCENDING), ("created_at", ASCENDING)], name="resolved_1_created_at_1"),
    ],
}


class DatabaseClient:
    """
    Async MongoDB client wrapper with connection pooling and lifecycle management.

    Example usage:
        ```python
        db_client = DatabaseClient(get_settings())
        await db_client.connect()

        videos = db_client.get_videos_collection()
        await videos.find_one({"_id": video_id})

        await db_client.close()
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self._mongodb_uri = settings.mongodb_uri
        self._db_name = settings.mongodb_db_name
        self._min_pool_size = settings.mongodb_min_pool_size
        self._max_pool_size = settings.mongodb_max_pool_size
        self._client: AsyncIOMotorClient | None = None
        self._database: AsyncIOMotorDatabase | None = None

    async def connect(self) -> bool:
        """
        Establish the MongoDB connection, retrying with exponential backoff.

        Makes up to three attempts (1s, 2s between them) and verifies each with
        a ping before declaring success.

        Returns:
            bool: True if connection successful, False after all retries failed.
        """
        retry_delay = 1.0

        for attempt in range(1, CONNECT_MAX_ATTEMPTS + 1):
            try:
                logger.info(
                    "Connecting to MongoDB database %s (attempt %d/%d)",
                    self._db_name,
                    attempt,
                    CONNECT_MAX_ATTEMPTS,
                )
                self._client = AsyncIOMotorClient(
                    self._mongodb_uri,
                    minPoolSize=self._min_pool_size,
                    maxPoolSize=self._max_pool_size,
                    serverSelectionTimeoutMS=5000,
                    tz_aware=True,
                )
                self._database = self._client[self._db_name]
                await self._client.admin.command("ping")

                logger.info(
                    "Connected to MongoDB database %s (pool %d-%d)",
                    self._db_name,
                    self._min_pool_size,
                    self._max_pool_size,
                )
                return True

            except (ServerSelectionTimeoutError, ConnectionFailure):
                logger.exception(
                    "MongoDB connection failure (attempt %d/%d)", attempt, CONNECT_MAX_ATTEMPTS
                )
                if attempt < CONNECT_MAX_ATTEMPTS:
                    logger.warning("Retrying in %.0f seconds...", retry_delay)
                    await asyncio.sleep(retry_delay)
                    retry_delay *= 2

        logger.error(
            "Failed to connect to MongoDB after %d attempts. "
            "Check connection URI and server availability.",
            CONNECT_MAX_ATTEMPTS,
        )
        return False

    async def close(self) -> None:
        """Close the connection; safe to call when not connected."""
        if self._client is None:
            logger.warning("MongoDB close called but no active connection exists")
            return
        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed for database: %s", self._db_name)

    async def ping(self) -> bool:
        """
        Health check using the MongoDB admin ping command.

        Returns:
            bool: True if ping successful, False on failure.
        """
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError:
            logger.exception("MongoDB ping failed")
            return False

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance for direct operations.

        Raises:
            RuntimeError: If not connected to MongoDB.
        """
        if self._database is None:
            raise RuntimeError(
                "MongoDB database not available. Call connect() first or check connection status."
            )
        return self._database

    def get_videos_collection(self) -> AsyncIOMotorCollection:
        """
        Get the videos collection.

        Each document is one VideoRecord keyed by a string ``_id``: title,
        description, category, storage identifiers and derived URLs, owner,
        view count, liked-by set and comments.

        Raises:
            RuntimeError: If not connected to MongoDB.
        """
        return self.get_database()[VIDEOS_COLLECTION]

    def get_orphaned_assets_collection(self) -> AsyncIOMotorCollection:
        """
        Get the orphaned_assets collection.

        Holds remote assets that were stored but never recorded (or whose
        record was deleted before the remote delete succeeded), pending
        reconciliation.

        Raises:
            RuntimeError: If not connected to MongoDB.
        """
        return self.get_database()[ORPHANED_ASSETS_COLLECTION]

    async def create_indexes(self) -> None:
        """
        Create indexes for the queries the backend runs:
        - videos: owner listings (newest first), liked-by lookups, category,
          and a unique public_id so one remote asset backs at most one record
        - orphaned_assets: public_id and unresolved entries by age
        """
        database = self.get_database()

        try:
            for name, indexes in COLLECTION_INDEXES.items():
                await database[name].create_indexes(indexes)
                logger.info("Created indexes on %s collection", name)

        except PyMongoError:
            logger.exception("Error creating MongoDB indexes")
            raise


class _DatabaseClientContainer:
    """Container for database client singleton to avoid global statements."""

    client: DatabaseClient | None = None


_container = _DatabaseClientContainer()


async def init_db(settings: Settings | None = None) -> DatabaseClient:
    """
    Initialize the database client singleton, connect and create indexes.

    Called from the FastAPI lifespan and from the operator scripts.

    Args:
        settings: Optional Settings instance; defaults to get_settings().

    Returns:
        DatabaseClient: The initialized database client instance.

    Raises:
        RuntimeError: If connection to MongoDB fails after all retries.
    """
    if _container.client is not None:
        logger.warning("Database client already initialized, returning existing instance")
        return _container.client

    client = DatabaseClient(settings or get_settings())
    if not await client.connect():
        raise RuntimeError(
            "Failed to establish MongoDB connection. "
            "Check mongodb_uri configuration and server availability."
        )
    await client.create_indexes()

    _container.client = client
    logger.info("MongoDB database client initialization complete")
    return client


async def close_db() -> None:
    """Close the database client singleton, if any."""
    if _container.client is None:
        return
    await _container.client.close()
    _container.client = None


def get_db_client() -> DatabaseClient:
    """
    Get the database client singleton.

    Raises:
        RuntimeError: If database client has not been initialized.
    """
    if _container.client is None:
        raise RuntimeError(
            "Database client not initialized. Call init_db() first during application startup."
        )
    return _container.client
