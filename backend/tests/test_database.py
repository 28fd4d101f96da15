"""
Tests for index creation.

Test Classes:
- TestCreateIndexes: the application and scripts/init_db.py build the same indexes
"""

from unittest.mock import AsyncMock, Mock

import pytest

from app.core.database import (
    COLLECTION_INDEXES,
    ORPHANED_ASSETS_COLLECTION,
    VIDEOS_COLLECTION,
    DatabaseClient,
)
from scripts.init_db import DatabaseInitializer


def index_names(collection: str) -> list[str]:
    return [index.document["name"] for index in COLLECTION_INDEXES[collection]]


class TestCreateIndexes:
    def test_public_id_is_unique_for_videos_only(self):
        [videos_public_id] = [i for i in COLLECTION_INDEXES[VIDEOS_COLLECTION] if i.document["name"] == "public_id_1"]
        [orphans_public_id] = [
            i for i in COLLECTION_INDEXES[ORPHANED_ASSETS_COLLECTION] if i.document["name"] == "public_id_1"
        ]

        assert videos_public_id.document["unique"] is True
        assert "unique" not in orphans_public_id.document

    @pytest.mark.asyncio
    async def test_client_creates_every_shared_index(self, test_settings, monkeypatch):
        collections = {name: Mock(create_indexes=AsyncMock()) for name in COLLECTION_INDEXES}
        db_client = DatabaseClient(test_settings)
        monkeypatch.setattr(db_client, "get_database", lambda: collections)

        await db_client.create_indexes()

        for name, collection in collections.items():
            collection.create_indexes.assert_awaited_once_with(COLLECTION_INDEXES[name])

    def test_init_script_skips_existing_and_creates_the_rest(self):
        collection = Mock()
        collection.index_information.return_value = {"_id_": {}, "public_id_1": {}}

        DatabaseInitializer().create_indexes(collection, COLLECTION_INDEXES[VIDEOS_COLLECTION])

        created = [call.args[0][0].document["name"] for call in collection.create_indexes.call_args_list]
        assert created == [name for name in index_names(VIDEOS_COLLECTION) if name != "public_id_1"]
