"""
Pytest Configuration and Test Fixtures for the NaviStream Backend

This module provides the fixtures shared by the test suite:
- Test Settings with a per-test staging directory and no retry delay
- Bearer tokens for two users and their Authorization headers
- Mocked S3 storage service (no network) and OpenCV metadata probe
- An in-memory stand-in for the Motor ``videos`` and ``orphaned_assets``
  collections, supporting the queries and update operators the services issue
- Real StagingStore, RemoteAssetService, VideoService and UploadPipeline
  instances wired to those mocks
- FastAPI TestClient with the service dependencies overridden
- Upload file factories producing Starlette UploadFile objects
"""

import copy

from collections.abc import Generator
from io import BytesIO
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from fastapi.testclient import TestClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from starlette.datastructures import Headers, UploadFile

from app.api.v1.videos import get_derivative_service, get_upload_pipeline, get_video_service
from app.config import Settings, get_settings
from app.core.auth import RequestContext, create_access_token
from app.main import app
from app.services.derivative_service import DerivativeService
from app.services.metadata_service import MetadataService, VideoProbe
from app.services.orphan_ledger import OrphanLedger
from app.services.remote_asset_service import RemoteAssetService
from app.services.staging_service import StagingStore
from app.services.storage_service import StorageService
from app.services.upload_service import UploadPipeline
from app.services.video_service import VideoService


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


MB = 1024 * 1024

TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"


# ==============================================================================
# In-memory Motor collection
# ==============================================================================


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        for operator, operand in condition.items():
            if operator == "$elemMatch":
                if not isinstance(value, list) or not any(_matches(item, operand) for item in value):
                    return False
            elif operator == "$lte":
                if value is None or value > operand:
                    return False
            elif operator == "$ne":
                if value == operand:
                    return False
            else:
                raise NotImplementedError(f"Query operator {operator} is not supported")
        return True
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value == condition


def _matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    return all(_matches_condition(document.get(field), condition) for field, condition in query.items())


def _pull(items: list[Any], condition: Any) -> list[Any]:
    if isinstance(condition, dict):
        return [item for item in items if not (isinstance(item, dict) and _matches(item, condition))]
    return [item for item in items if item != condition]


def _apply_update(document: dict[str, Any], update: dict[str, Any]) -> bool:
    before = copy.deepcopy(document)
    for operator, fields in update.items():
        for field, operand in fields.items():
            if operator == "$set":
                document[field] = operand
            elif operator == "$inc":
                document[field] = document.get(field, 0) + operand
            elif operator == "$push":
                document.setdefault(field, []).append(copy.deepcopy(operand))
            elif operator == "$addToSet":
                values = document.setdefault(field, [])
                if operand not in values:
                    values.append(operand)
            elif operator == "$pull":
                document[field] = _pull(document.get(field, []), operand)
            else:
                raise NotImplementedError(f"Update operator {operator} is not supported")
    return document != before


class FakeCursor:
    """Async iterable returned by FakeCollection.find, with sort and limit."""

    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._documents.sort(key=lambda doc: doc.get(key), reverse=direction < 0)
        return self

    def limit(self, count: int) -> "FakeCursor":
        if count:
            self._documents = self._documents[:count]
        return self

    def __aiter__(self) -> "FakeCursor":
        self._iter = iter(self._documents)
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None


class FakeCollection:
    """
    Dictionary-backed stand-in for an AsyncIOMotorCollection.

    Supports equality, array membership, ``$elemMatch``, ``$lte`` and ``$ne``
    filters and the ``$set``, ``$inc``, ``$push``, ``$addToSet`` and ``$pull``
    update operators. Documents are copied in and out so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self.documents: dict[Any, dict[str, Any]] = {}
        self._next_id = 0

    def _find_first(self, query: dict[str, Any]) -> dict[str, Any] | None:
        return next((doc for doc in self.documents.values() if _matches(doc, query)), None)

    async def insert_one(self, document: dict[str, Any]) -> SimpleNamespace:
        if "_id" not in document:
            self._next_id += 1
            document["_id"] = f"generated-{self._next_id}"
        if document["_id"] in self.documents:
            raise DuplicateKeyError(f"Duplicate _id {document['_id']}")
        self.documents[document["_id"]] = copy.deepcopy(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def find_one(self, query: dict[str, Any], *args: Any, **kwargs: Any) -> dict[str, Any] | None:
        document = self._find_first(query)
        return copy.deepcopy(document) if document is not None else None

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        return FakeCursor([copy.deepcopy(doc) for doc in self.documents.values() if _matches(doc, query or {})])

    async def find_one_and_update(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        projection: dict[str, Any] | None = None,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> dict[str, Any] | None:
        document = self._find_first(query)
        if document is None:
            return None
        before = copy.deepcopy(document)
        _apply_update(document, update)
        return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before

    async def find_one_and_delete(self, query: dict[str, Any]) -> dict[str, Any] | None:
        document = self._find_first(query)
        if document is None:
            return None
        return self.documents.pop(document["_id"])

    async def update_one(self, query: dict[str, Any], update: dict[str, Any]) -> SimpleNamespace:
        document = self._find_first(query)
        if document is None:
            return SimpleNamespace(matched_count=0, modified_count=0)
        modified = _apply_update(document, update)
        return SimpleNamespace(matched_count=1, modified_count=int(modified))

    async def count_documents(self, query: dict[str, Any], limit: int | None = None) -> int:
        count = sum(1 for doc in self.documents.values() if _matches(doc, query))
        return min(count, limit) if limit else count


# ==============================================================================
# Settings and Authentication Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """
    Settings for tests: 2 MiB upload ceiling, staging under tmp_path, three
    remote attempts without delay and derivatives enabled (the derivative
    service itself is mocked).
    """
    return Settings(
        app_env="testing",
        debug=True,
        json_logs=False,
        secret_key="test-secret-key-for-jwt-signing-minimum-32-chars",
        mongodb_uri="mongodb://localhost:27017",
        mongodb_db_name="navistream_test",
        s3_endpoint_url="http://localhost:9000",
        s3_bucket_name="test-bucket",
        storage_public_base_url="https://cdn.test",
        remote_folder="navistream/videos",
        max_upload_size_mb=2,
        multipart_overhead_bytes=MB,
        staging_dir=str(tmp_path / "staging"),
        staging_chunk_size_bytes=64 * 1024,
        remote_upload_max_attempts=3,
        remote_upload_retry_delay_seconds=0,
        enable_derivatives=True,
    )


@pytest.fixture
def auth_token(test_settings: Settings) -> str:
    return create_access_token(TEST_USER_ID, settings=test_settings)


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def other_auth_headers(test_settings: Settings) -> dict[str, str]:
    """Authorization headers of a second user, for ownership checks."""
    return {"Authorization": f"Bearer {create_access_token(OTHER_USER_ID, settings=test_settings)}"}


@pytest.fixture
def request_context() -> RequestContext:
    return RequestContext(user_id=TEST_USER_ID, request_id="req-test-1")


# ==============================================================================
# Storage and Metadata Mocks
# ==============================================================================


@pytest.fixture
def mock_storage(test_settings: Settings) -> Mock:
    """
    StorageService mock: every network operation is an AsyncMock that
    succeeds, ``public_url`` builds real URLs from the test base URL.
    """
    storage = Mock(spec=StorageService)
    storage.public_base_url = test_settings.public_base_url
    storage.public_url = Mock(side_effect=lambda key: f"{test_settings.public_base_url}/{key}")
    storage.upload_file = AsyncMock(return_value=None)
    storage.download_file = AsyncMock(side_effect=lambda key, path: path)
    storage.delete_files = AsyncMock(return_value=None)
    storage.delete_file = AsyncMock(return_value=None)
    storage.file_exists = AsyncMock(return_value=True)
    return storage


@pytest.fixture
def mock_metadata() -> Mock:
    metadata = Mock(spec=MetadataService)
    metadata.extract_video_metadata = AsyncMock(
        return_value=VideoProbe(
            width=1920, height=1080, frame_rate=30.0, frame_count=300, duration_seconds=10.0, codec="avc1"
        )
    )
    return metadata


# ==============================================================================
# Service Fixtures
# ==============================================================================


@pytest.fixture
def videos_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def orphans_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def staging_store(test_settings: Settings) -> StagingStore:
    store = StagingStore.from_settings(test_settings)
    store.ensure_root()
    return store


@pytest.fixture
def orphan_ledger(orphans_collection: FakeCollection) -> OrphanLedger:
    return OrphanLedger(orphans_collection)


@pytest.fixture
def remote_asset_service(mock_storage: Mock, mock_metadata: Mock, test_settings: Settings) -> RemoteAssetService:
    return RemoteAssetService(mock_storage, mock_metadata, test_settings)


@pytest.fixture
def video_service(
    videos_collection: FakeCollection,
    remote_asset_service: RemoteAssetService,
    orphan_ledger: OrphanLedger,
) -> VideoService:
    return VideoService(videos_collection, remote_asset_service, orphan_ledger)


@pytest.fixture
def upload_pipeline(
    staging_store: StagingStore,
    remote_asset_service: RemoteAssetService,
    video_service: VideoService,
    orphan_ledger: OrphanLedger,
    test_settings: Settings,
) -> UploadPipeline:
    return UploadPipeline(staging_store, remote_asset_service, video_service, orphan_ledger, test_settings)


@pytest.fixture
def mock_derivatives() -> Mock:
    derivatives = Mock(spec=DerivativeService)
    derivatives.run = AsyncMock(return_value=None)
    return derivatives


# ==============================================================================
# FastAPI Client
# ==============================================================================


@pytest.fixture
def client(
    test_settings: Settings,
    upload_pipeline: UploadPipeline,
    video_service: VideoService,
    mock_derivatives: Mock,
) -> Generator[TestClient, None, None]:
    """
    TestClient with settings and services overridden.

    Used without a ``with`` block, so the lifespan (MongoDB connection and
    staging sweep) does not run.
    """
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_upload_pipeline] = lambda: upload_pipeline
    app.dependency_overrides[get_video_service] = lambda: video_service
    app.dependency_overrides[get_derivative_service] = lambda: mock_derivatives

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()


# ==============================================================================
# Upload File Factories
# ==============================================================================


def make_video_bytes(size: int) -> bytes:
    """Bytes starting with an MP4 ``ftyp`` box, padded to ``size``."""
    header = b"\x00\x00\x00\x20ftypisom\x00\x00\x02\x00isomiso2avc1mp41"
    return (header + b"\x00" * max(size - len(header), 0))[:size]


def make_upload_file(
    content: bytes,
    filename: str = "clip.mp4",
    content_type: str = "video/mp4",
    size: int | None = None,
) -> UploadFile:
    """Starlette UploadFile as the multipart parser would build it."""
    return UploadFile(
        BytesIO(content),
        size=len(content) if size is None else size,
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def small_video() -> bytes:
    return make_video_bytes(256 * 1024)


@pytest.fixture
def upload_file_factory():
    return make_upload_file


@pytest.fixture
def video_bytes_factory():
    return make_video_bytes


@pytest.fixture
def staging_root(test_settings: Settings, staging_store: StagingStore) -> Path:
    """Staging root directory, created and empty at the start of the test."""
    return staging_store.root
