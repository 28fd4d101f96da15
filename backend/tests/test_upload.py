"""
Tests for the upload pipeline and the video API endpoints.

Test Classes:
- TestPipelineRun: state machine bookkeeping
- TestUploadPipeline: end-to-end runs against mocked storage and the
  in-memory collection, including every failure stage and cleanup
- TestUploadEndpoint: POST /api/v1/videos/upload over HTTP
- TestVideoEndpoints: listings, edits, views, likes and comments over HTTP
"""

import asyncio

from unittest.mock import AsyncMock

import pytest

from pymongo.errors import PyMongoError
from starlette.requests import ClientDisconnect, Request

from app.core.errors import (
    MISSING_FIELD,
    TOO_LARGE,
    UNSUPPORTED_TYPE,
    AdmissionError,
    IOFailure,
    PersistenceFailure,
    RemoteUploadFailure,
)
from app.core.auth import RequestContext
from app.models.video import FailureStage, PipelineState
from app.services.storage_service import StorageOperationError, StorageTransientError
from app.services.upload_service import PipelineRun
from app.utils.logger import ORPHAN_LOGGER_NAME


MB = 1024 * 1024
UPLOAD_URL = "/api/v1/videos/upload"

HAPPY_PATH = [
    PipelineState.RECEIVED,
    PipelineState.ADMITTED,
    PipelineState.STAGED,
    PipelineState.REMOTE_UPLOADED,
    PipelineState.RECORDED,
    PipelineState.COMPLETED,
]


class BrokenUpload:
    """UploadFile look-alike whose stream fails after the first chunk."""

    filename = "clip.mp4"
    content_type = "video/mp4"
    size = None

    def __init__(self) -> None:
        self._sent = False

    async def read(self, size: int = -1) -> bytes:
        if self._sent:
            raise OSError("client went away")
        self._sent = True
        return b"\x00" * 1024


# ==============================================================================
# Pipeline Run
# ==============================================================================


class TestPipelineRun:
    def test_starts_received(self):
        run = PipelineRun(request_id="r1")

        assert run.state == PipelineState.RECEIVED
        assert run.history == [PipelineState.RECEIVED]
        assert not run.is_terminal

    def test_fail_is_terminal(self):
        run = PipelineRun(request_id="r1")
        run.advance(PipelineState.ADMITTED)
        run.fail(FailureStage.STAGING, "IOFailure")

        assert run.is_terminal
        assert run.failed_stage == FailureStage.STAGING
        assert run.history[-1] == PipelineState.FAILED

        with pytest.raises(RuntimeError):
            run.advance(PipelineState.STAGED)

    def test_second_fail_keeps_first_cause(self):
        run = PipelineRun(request_id="r1")
        run.fail(FailureStage.ADMISSION, "TooLarge")
        run.fail(FailureStage.REMOTE, "RemoteUploadFailure")

        assert run.failed_stage == FailureStage.ADMISSION
        assert run.history.count(PipelineState.FAILED) == 1


# ==============================================================================
# Pipeline
# ==============================================================================


class TestUploadPipeline:
    @pytest.mark.asyncio
    async def test_successful_upload(
        self,
        upload_pipeline,
        request_context,
        upload_file_factory,
        video_bytes_factory,
        videos_collection,
        staging_root,
        mock_storage,
    ):
        upload = upload_file_factory(video_bytes_factory(MB))

        run = await upload_pipeline.run(request_context, upload, "Test", None, "music")

        assert run.history == HAPPY_PATH
        assert run.record.owner_id == request_context.user_id
        assert run.record.views == 0
        assert run.record.liked_by == []
        assert run.record.url == run.asset.secure_url
        assert run.record.public_id == run.asset.public_id
        assert list(videos_collection.documents) == [run.record.id]
        assert list(staging_root.iterdir()) == []
        mock_storage.upload_file.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_declared_oversize_is_rejected_before_staging(
        self, upload_pipeline, request_context, upload_file_factory, staging_root, mock_storage, videos_collection
    ):
        upload = upload_file_factory(b"tiny", size=150 * MB)

        with pytest.raises(AdmissionError) as exc_info:
            await upload_pipeline.run(request_context, upload, "Test")

        assert exc_info.value.reason == TOO_LARGE
        assert exc_info.value.message == "File too large. Maximum size is 2 MB"
        assert list(staging_root.iterdir()) == []
        mock_storage.upload_file.assert_not_awaited()
        assert videos_collection.documents == {}

    @pytest.mark.asyncio
    async def test_unsupported_type_is_rejected(
        self, upload_pipeline, request_context, upload_file_factory, mock_storage
    ):
        run = PipelineRun(request_id=request_context.request_id)
        upload = upload_file_factory(b"%PDF-1.4", filename="doc.pdf", content_type="application/pdf")

        with pytest.raises(AdmissionError) as exc_info:
            await upload_pipeline.run(request_context, upload, "Test", pipeline_run=run)

        assert exc_info.value.reason == UNSUPPORTED_TYPE
        assert run.state == PipelineState.FAILED
        assert run.failed_stage == FailureStage.ADMISSION
        mock_storage.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_file_and_title(self, upload_pipeline, request_context, upload_file_factory):
        with pytest.raises(AdmissionError) as exc_info:
            await upload_pipeline.run(request_context, None, "Test")
        assert exc_info.value.reason == MISSING_FIELD

        with pytest.raises(AdmissionError) as exc_info:
            await upload_pipeline.run(request_context, upload_file_factory(b"x"), "  ")
        assert exc_info.value.reason == MISSING_FIELD

    @pytest.mark.asyncio
    async def test_staging_failure(self, upload_pipeline, request_context, staging_root, mock_storage):
        run = PipelineRun(request_id=request_context.request_id)

        with pytest.raises(IOFailure):
            await upload_pipeline.run(request_context, BrokenUpload(), "Test", pipeline_run=run)

        assert run.failed_stage == FailureStage.STAGING
        assert list(staging_root.iterdir()) == []
        mock_storage.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_failure_after_retries(
        self,
        upload_pipeline,
        request_context,
        upload_file_factory,
        staging_root,
        mock_storage,
        videos_collection,
    ):
        mock_storage.upload_file.side_effect = StorageTransientError("connection reset")
        run = PipelineRun(request_id=request_context.request_id)

        with pytest.raises(RemoteUploadFailure) as exc_info:
            await upload_pipeline.run(request_context, upload_file_factory(b"x" * 4096), "Test", pipeline_run=run)

        assert exc_info.value.attempts == 3
        assert mock_storage.upload_file.await_count == 3
        assert run.history == [
            PipelineState.RECEIVED,
            PipelineState.ADMITTED,
            PipelineState.STAGED,
            PipelineState.FAILED,
        ]
        assert list(staging_root.iterdir()) == []
        assert videos_collection.documents == {}

    @pytest.mark.asyncio
    async def test_persistence_failure_reports_orphan(
        self,
        upload_pipeline,
        request_context,
        upload_file_factory,
        staging_root,
        videos_collection,
        orphans_collection,
        caplog,
    ):
        videos_collection.insert_one = AsyncMock(side_effect=PyMongoError("write concern timeout"))
        run = PipelineRun(request_id=request_context.request_id)

        with caplog.at_level("ERROR", logger=ORPHAN_LOGGER_NAME):
            with pytest.raises(PersistenceFailure) as exc_info:
                await upload_pipeline.run(request_context, upload_file_factory(b"x" * 4096), "Test", pipeline_run=run)

        public_id = run.asset.public_id
        assert exc_info.value.public_id == public_id
        assert run.failed_stage == FailureStage.PERSISTENCE
        assert list(staging_root.iterdir()) == []

        [entry] = orphans_collection.documents.values()
        assert entry["public_id"] == public_id
        assert entry["owner_id"] == request_context.user_id
        assert entry["object_keys"][0] == run.asset.object_key
        assert any(r.name == ORPHAN_LOGGER_NAME and r.public_id == public_id for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unexpected_record_error_is_wrapped(
        self, upload_pipeline, request_context, upload_file_factory, videos_collection, orphans_collection
    ):
        videos_collection.insert_one = AsyncMock(side_effect=RuntimeError("driver bug"))

        with pytest.raises(PersistenceFailure) as exc_info:
            await upload_pipeline.run(request_context, upload_file_factory(b"x"), "Test")

        assert "driver bug" in exc_info.value.details
        assert len(orphans_collection.documents) == 1

    @pytest.mark.asyncio
    async def test_hostile_filename_keeps_object_key_clean(
        self, upload_pipeline, request_context, upload_file_factory, mock_storage
    ):
        upload = upload_file_factory(b"x" * 4096, filename="clip.mp4#x?y=1")

        run = await upload_pipeline.run(request_context, upload, "Test")

        assert run.asset.object_key == f"{run.asset.public_id}.mp4"
        assert run.record.url == f"https://cdn.test/{run.asset.public_id}.mp4"
        mock_storage.upload_file.assert_awaited_once()
        assert mock_storage.upload_file.await_args.args[0] == run.asset.object_key

    @pytest.mark.asyncio
    async def test_unexpected_remote_error_is_wrapped(
        self,
        upload_pipeline,
        request_context,
        upload_file_factory,
        mock_metadata,
        mock_storage,
        staging_root,
        videos_collection,
    ):
        mock_metadata.extract_video_metadata.side_effect = RuntimeError("codec probe crashed")
        run = PipelineRun(request_id=request_context.request_id)

        with pytest.raises(RemoteUploadFailure) as exc_info:
            await upload_pipeline.run(request_context, upload_file_factory(b"x" * 4096), "Test", pipeline_run=run)

        assert "codec probe crashed" in exc_info.value.details
        assert exc_info.value.to_response()["code"] == "RemoteUploadFailure"
        assert run.failed_stage == FailureStage.REMOTE
        mock_storage.upload_file.assert_not_awaited()
        assert list(staging_root.iterdir()) == []
        assert videos_collection.documents == {}

    @pytest.mark.asyncio
    async def test_concurrent_uploads_are_isolated(
        self, upload_pipeline, upload_file_factory, mock_storage, videos_collection, staging_root
    ):
        staged_paths = []

        async def capture(object_key, file_path, **kwargs):
            staged_paths.append(file_path)
            await asyncio.sleep(0)

        mock_storage.upload_file.side_effect = capture
        contexts = [RequestContext(user_id="user-a"), RequestContext(user_id="user-b")]

        runs = await asyncio.gather(
            *(upload_pipeline.run(ctx, upload_file_factory(b"x" * 2048, filename="same.mp4"), "Same") for ctx in contexts)
        )

        assert len(set(staged_paths)) == 2
        assert {run.record.owner_id for run in runs} == {"user-a", "user-b"}
        assert len({run.asset.public_id for run in runs}) == 2
        assert len(videos_collection.documents) == 2
        assert list(staging_root.iterdir()) == []


# ==============================================================================
# Upload Endpoint
# ==============================================================================


def post_upload(client, headers, content: bytes, filename="clip.mp4", content_type="video/mp4", **fields):
    data = {"title": "Test", **fields}
    return client.post(UPLOAD_URL, headers=headers, data=data, files={"video": (filename, content, content_type)})


class TestUploadEndpoint:
    def test_upload_returns_created_record(
        self, client, auth_headers, video_bytes_factory, staging_root, mock_derivatives
    ):
        response = post_upload(client, auth_headers, video_bytes_factory(MB), description="Intro", category="music")

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Video uploaded successfully"
        video = body["video"]
        assert video["title"] == "Test"
        assert video["description"] == "Intro"
        assert video["category"] == "music"
        assert video["views"] == 0
        assert video["likedBy"] == []
        assert video["owner"] == "user-1"
        assert video["url"].startswith("https://cdn.test/navistream/videos/")
        assert video["thumbnailURL"].endswith(f"{video['publicID']}.jpg")
        assert list(staging_root.iterdir()) == []
        assert "X-Request-ID" in response.headers

        mock_derivatives.run.assert_awaited_once()
        assert mock_derivatives.run.await_args.args[0] == video["publicID"]

    def test_missing_token_is_rejected_before_admission(self, client, mock_storage, staging_root):
        response = post_upload(client, {}, b"x" * 1024)

        assert response.status_code == 401
        assert response.json() == {"error": "Please authenticate"}
        mock_storage.upload_file.assert_not_awaited()
        assert list(staging_root.iterdir()) == []

    def test_invalid_token(self, client):
        response = post_upload(client, {"Authorization": "Bearer not-a-token"}, b"x" * 1024)

        assert response.status_code == 401

    def test_oversized_request_is_too_large(self, client, auth_headers, staging_root, mock_storage):
        response = post_upload(client, auth_headers, b"x" * (4 * MB))

        assert response.status_code == 400
        assert response.json() == {"error": "File too large. Maximum size is 2 MB", "code": TOO_LARGE}
        assert list(staging_root.iterdir()) == []
        mock_storage.upload_file.assert_not_awaited()

    def test_file_over_ceiling_within_request_allowance(self, client, auth_headers, staging_root):
        response = post_upload(client, auth_headers, b"x" * (2 * MB + 512 * 1024))

        assert response.status_code == 400
        assert response.json()["code"] == TOO_LARGE
        assert list(staging_root.iterdir()) == []

    def test_unsupported_type(self, client, auth_headers):
        response = post_upload(client, auth_headers, b"\x89PNG", filename="image.png", content_type="image/png")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid file type. Supported formats: MP4, MOV, AVI, MKV",
            "code": UNSUPPORTED_TYPE,
        }

    def test_missing_title(self, client, auth_headers):
        response = client.post(
            UPLOAD_URL, headers=auth_headers, files={"video": ("clip.mp4", b"x" * 1024, "video/mp4")}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Title is required", "code": MISSING_FIELD}

    def test_missing_file(self, client, auth_headers):
        response = client.post(UPLOAD_URL, headers=auth_headers, data={"title": "Test"})

        assert response.status_code == 400
        assert response.json()["error"] == "No video file provided"

    def test_remote_failure_is_500(self, client, auth_headers, mock_storage, staging_root, videos_collection):
        mock_storage.upload_file.side_effect = StorageTransientError("connection reset")

        response = post_upload(client, auth_headers, b"x" * 4096)

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to upload video to cloud storage"
        assert body["code"] == "RemoteUploadFailure"
        assert "connection reset" in body["details"]
        assert mock_storage.upload_file.await_count == 3
        assert list(staging_root.iterdir()) == []
        assert videos_collection.documents == {}

    def test_rejected_remote_upload_is_not_retried(self, client, auth_headers, mock_storage):
        mock_storage.upload_file.side_effect = StorageOperationError("Access Denied")

        response = post_upload(client, auth_headers, b"x" * 4096)

        assert response.status_code == 500
        assert mock_storage.upload_file.await_count == 1

    def test_client_disconnect_is_io_failure(
        self, client, auth_headers, monkeypatch, mock_storage, staging_root, videos_collection
    ):
        async def disconnected_form(self, **kwargs):
            raise ClientDisconnect()

        monkeypatch.setattr(Request, "form", disconnected_form)

        response = post_upload(client, auth_headers, b"x" * 4096)

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "IOFailure"
        assert body["error"] == "Failed to receive video upload"
        mock_storage.upload_file.assert_not_awaited()
        assert not staging_root.exists() or list(staging_root.iterdir()) == []
        assert videos_collection.documents == {}

    def test_persistence_failure_is_500(
        self, client, auth_headers, videos_collection, orphans_collection, staging_root, mock_derivatives
    ):
        videos_collection.insert_one = AsyncMock(side_effect=PyMongoError("not primary"))

        response = post_upload(client, auth_headers, b"x" * 4096)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to upload video"
        assert len(orphans_collection.documents) == 1
        assert list(staging_root.iterdir()) == []
        mock_derivatives.run.assert_not_awaited()


# ==============================================================================
# Video Record Endpoints
# ==============================================================================


@pytest.fixture
def uploaded_video(client, auth_headers):
    response = post_upload(client, auth_headers, b"x" * 4096)
    assert response.status_code == 201
    return response.json()["video"]


class TestVideoEndpoints:
    def test_get_video(self, client, auth_headers, uploaded_video):
        response = client.get(f"/api/v1/videos/{uploaded_video['id']}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["publicID"] == uploaded_video["publicID"]

    def test_get_unknown_video(self, client, auth_headers):
        response = client.get("/api/v1/videos/missing", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Video not found"}

    def test_list_mine(self, client, auth_headers, other_auth_headers, uploaded_video):
        mine = client.get("/api/v1/videos/mine", headers=auth_headers).json()
        theirs = client.get("/api/v1/videos/mine", headers=other_auth_headers).json()

        assert [video["id"] for video in mine] == [uploaded_video["id"]]
        assert theirs == []

    def test_view_counter(self, client, auth_headers, uploaded_video):
        url = f"/api/v1/videos/{uploaded_video['id']}/view"

        assert client.post(url, headers=auth_headers).json() == {"views": 1}
        assert client.post(url, headers=auth_headers).json() == {"views": 2}

    def test_like_toggle(self, client, other_auth_headers, uploaded_video):
        url = f"/api/v1/videos/{uploaded_video['id']}/like"

        assert client.post(url, headers=other_auth_headers).json() == {"likes": 1, "isLiked": True}
        assert client.post(url, headers=other_auth_headers).json() == {"likes": 0, "isLiked": False}

        liked = client.get("/api/v1/videos/liked", headers=other_auth_headers).json()
        assert liked == []

    def test_comment_lifecycle(self, client, auth_headers, other_auth_headers, uploaded_video):
        base = f"/api/v1/videos/{uploaded_video['id']}/comments"

        created = client.post(base, headers=other_auth_headers, json={"text": "Nice"})
        assert created.status_code == 201
        comment = created.json()
        assert comment["author"] == "user-2"
        assert comment["text"] == "Nice"

        forbidden = client.delete(f"{base}/{comment['id']}", headers=auth_headers)
        assert forbidden.status_code == 404
        assert forbidden.json() == {"error": "Comment not found or not authorized"}

        removed = client.delete(f"{base}/{comment['id']}", headers=other_auth_headers)
        assert removed.json() == {"message": "Comment deleted successfully"}

    def test_empty_comment_is_validation_error(self, client, auth_headers, uploaded_video):
        response = client.post(
            f"/api/v1/videos/{uploaded_video['id']}/comments", headers=auth_headers, json={"text": "   "}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_owner_updates_details(self, client, auth_headers, uploaded_video):
        response = client.put(
            f"/api/v1/videos/{uploaded_video['id']}", headers=auth_headers, json={"title": "Renamed"}
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"

    def test_update_rejects_engagement_fields(self, client, auth_headers, uploaded_video):
        response = client.put(f"/api/v1/videos/{uploaded_video['id']}", headers=auth_headers, json={"views": 99})

        assert response.status_code == 400

    def test_non_owner_cannot_update_or_delete(self, client, other_auth_headers, uploaded_video):
        url = f"/api/v1/videos/{uploaded_video['id']}"

        assert client.put(url, headers=other_auth_headers, json={"title": "Mine now"}).status_code == 404
        assert client.delete(url, headers=other_auth_headers).status_code == 404

    def test_owner_deletes_video(self, client, auth_headers, uploaded_video, mock_storage):
        url = f"/api/v1/videos/{uploaded_video['id']}"

        response = client.delete(url, headers=auth_headers)

        assert response.json() == {"message": "Video deleted successfully"}
        assert client.get(url, headers=auth_headers).status_code == 404
        mock_storage.delete_files.assert_awaited_once()


# ==============================================================================
# Health
# ==============================================================================


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready_without_database(self, client, monkeypatch):
        def no_client():
            raise RuntimeError("Database not initialized")

        monkeypatch.setattr("app.main.get_db_client", no_client)

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"] == {"mongodb": False}
