"""
S3-compatible storage service for NaviStream.

Wraps boto3 operations for the durable object store holding original uploads
and their derivatives. Works with both MinIO (development) and AWS S3
(production) through a configurable endpoint URL.

Key Features:
- Async-wrapped operations so blocking boto3 calls never stall the event loop
- Upload from a local path (multipart handled by boto3's transfer manager)
- Download to a local path, single and batch delete, existence checks
- Public URL construction for stored objects
- Error classification: transport and throttling failures raise
  StorageTransientError so callers know a retry may succeed

botocore's own retries are disabled; the remote asset uploader owns the only
retry loop so attempts stay bounded end to end.
"""

import asyncio
import logging

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

import boto3

from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from app.config import Settings


logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 error codes that indicate a temporary condition on the provider side
TRANSIENT_ERROR_CODES: frozenset[str] = frozenset(
    {
        "RequestTimeout",
        "RequestTimeoutException",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "InternalError",
        "ServiceUnavailable",
        "500",
        "502",
        "503",
        "504",
    }
)

TRANSIENT_TRANSPORT_ERRORS: tuple[type[BotoCoreError], ...] = (
    EndpointConnectionError,
    ConnectionClosedError,
    ReadTimeoutError,
    ConnectTimeoutError,
)

NOT_FOUND_ERROR_CODES: frozenset[str] = frozenset({"404", "NoSuchKey", "NotFound"})

# S3 DeleteObjects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000


def async_wrap(func: Callable[..., T]) -> Callable[..., "asyncio.Future[T]"]:
    """
    Decorator to wrap synchronous boto3 operations for async execution.

    Uses asyncio.to_thread so each blocking call runs in the default thread
    pool and only the awaiting upload task waits on it.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)

    return wrapper


class StorageServiceError(Exception):
    """Base exception for storage service errors."""


class StorageConnectionError(StorageServiceError):
    """Raised when the storage client cannot be created."""


class StorageCredentialsError(StorageServiceError):
    """Raised when storage credentials are missing or invalid."""


class StorageOperationError(StorageServiceError):
    """Raised when a storage operation fails."""

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class StorageTransientError(StorageOperationError):
    """Raised when a storage operation failed for a reason a retry may fix."""


class StorageNotFoundError(StorageOperationError):
    """Raised when a requested object does not exist."""


def _client_error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _client_error_message(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Message", "")) or str(error)


def classify_storage_error(error: Exception, action: str, object_key: str) -> StorageOperationError:
    """
    Translate a boto3/botocore exception into the storage exception hierarchy.

    Args:
        error: The exception raised by boto3 or s3transfer
        action: Short verb phrase for the failed operation ("upload", ...)
        object_key: Key the operation targeted

    Returns:
        StorageTransientError, StorageNotFoundError or StorageOperationError
    """
    # s3transfer wraps the ClientError of a failed upload in S3UploadFailedError
    if isinstance(error, S3UploadFailedError):
        wrapped = error.__cause__ or error.__context__
        if isinstance(wrapped, (ClientError, BotoCoreError)):
            return classify_storage_error(wrapped, action, object_key)
        return StorageOperationError(f"Failed to {action} {object_key}: {error}")

    if isinstance(error, ClientError):
        code = _client_error_code(error)
        message = f"Failed to {action} {object_key}: {_client_error_message(error)}"
        if code in NOT_FOUND_ERROR_CODES:
            return StorageNotFoundError(f"Object not found: {object_key}", error_code=code)
        if code in TRANSIENT_ERROR_CODES:
            return StorageTransientError(message, error_code=code)
        return StorageOperationError(message, error_code=code)

    if isinstance(error, TRANSIENT_TRANSPORT_ERRORS):
        return StorageTransientError(f"Storage unreachable during {action} of {object_key}: {error}")

    if isinstance(error, NoCredentialsError):
        return StorageOperationError(f"Storage credentials missing during {action}: {error}")

    return StorageOperationError(f"Storage error during {action} of {object_key}: {error}")


class StorageService:
    """
    S3-compatible storage service for the media bucket.

    Attributes:
        bucket_name: The bucket every operation targets
        endpoint_url: The S3-compatible endpoint URL (MinIO or AWS S3)
        public_base_url: Base URL public object URLs are built from

    Example:
        >>> service = StorageService.from_settings(get_settings())
        >>> await service.upload_file("navistream/videos/abc.mp4", "/tmp/abc.mp4", "video/mp4")
        >>> service.public_url("navistream/videos/abc.mp4")
    """

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region_name: str = "us-east-1",
        public_base_url: str | None = None,
    ) -> None:
        """
        Initialize the S3-compatible storage service.

        Args:
            bucket_name: Bucket name for all operations
            endpoint_url: S3-compatible endpoint URL (None for AWS S3 default)
            access_key: AWS access key ID or MinIO access key
            secret_key: AWS secret access key or MinIO secret key
            region_name: AWS region (default: us-east-1)
            public_base_url: Base URL for public object URLs

        Raises:
            StorageCredentialsError: If credentials are missing or invalid
            StorageConnectionError: If the client cannot be created
        """
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region_name = region_name
        self.public_base_url = (
            public_base_url or f"https://{bucket_name}.s3.{region_name}.amazonaws.com"
        ).rstrip("/")

        client_config: dict[str, Any] = {
            "service_name": "s3",
            "region_name": region_name,
            "config": Config(
                retries={"total_max_attempts": 1, "mode": "standard"},
                connect_timeout=10,
                read_timeout=120,
            ),
        }
        if endpoint_url:
            client_config["endpoint_url"] = endpoint_url
        if access_key and secret_key:
            client_config["aws_access_key_id"] = access_key
            client_config["aws_secret_access_key"] = secret_key

        try:
            self._client = boto3.client(**client_config)
        except NoCredentialsError as e:
            raise StorageCredentialsError(
                "S3 credentials not found. Configure S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY."
            ) from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to initialize S3 client: {e}") from e

        logger.info(
            "StorageService initialized with bucket=%s, endpoint=%s",
            bucket_name,
            endpoint_url or "AWS S3 default",
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageService":
        """Build a StorageService from application settings."""
        return cls(
            bucket_name=settings.s3_bucket_name,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key_id,
            secret_key=settings.s3_secret_access_key,
            region_name=settings.s3_region,
            public_base_url=settings.public_base_url,
        )

    def public_url(self, object_key: str) -> str:
        """Public URL an object is served from. Pure: no network access."""
        return f"{self.public_base_url}/{object_key.lstrip('/')}"

    async def upload_file(
        self,
        object_key: str,
        file_path: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Upload a local file to the bucket.

        Args:
            object_key: Destination key
            file_path: Local file system path to upload
            content_type: MIME type stored with the object
            metadata: Optional user metadata attached to the object

        Returns:
            Dictionary with object_key, bucket and url

        Raises:
            StorageTransientError: Transport failure or throttling; retry may succeed
            StorageOperationError: Any other upload failure
        """
        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args["ContentType"] = content_type
        if metadata:
            extra_args["Metadata"] = metadata

        @async_wrap
        def _upload_file() -> None:
            self._client.upload_file(
                file_path,
                self.bucket_name,
                object_key,
                ExtraArgs=extra_args or None,
            )

        logger.debug("Uploading %s to %s/%s", file_path, self.bucket_name, object_key)
        try:
            await _upload_file()
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise classify_storage_error(e, "upload", object_key) from e
        except OSError as e:
            raise StorageOperationError(f"File system error uploading {file_path}: {e}") from e

        return {
            "object_key": object_key,
            "bucket": self.bucket_name,
            "url": self.public_url(object_key),
        }

    async def download_file(self, object_key: str, file_path: str) -> str:
        """
        Download an object to a local path.

        Returns:
            The local path written

        Raises:
            StorageNotFoundError: If the object does not exist
            StorageOperationError: If the download fails
        """

        @async_wrap
        def _download_file() -> None:
            self._client.download_file(self.bucket_name, object_key, file_path)

        try:
            await _download_file()
        except (ClientError, BotoCoreError) as e:
            raise classify_storage_error(e, "download", object_key) from e
        except OSError as e:
            raise StorageOperationError(f"File system error downloading to {file_path}: {e}") from e
        return file_path

    async def delete_file(self, object_key: str) -> None:
        """
        Delete one object. S3 reports success for keys that do not exist.

        Raises:
            StorageOperationError: If the delete fails
        """

        @async_wrap
        def _delete() -> dict[str, Any]:
            return self._client.delete_object(Bucket=self.bucket_name, Key=object_key)

        try:
            await _delete()
        except (ClientError, BotoCoreError) as e:
            raise classify_storage_error(e, "delete", object_key) from e
        logger.info("Deleted object %s", object_key)

    async def delete_files(self, object_keys: list[str]) -> None:
        """
        Delete several objects with DeleteObjects.

        Raises:
            StorageOperationError: If the call fails or any key reports an error
        """
        for start in range(0, len(object_keys), DELETE_BATCH_SIZE):
            batch = object_keys[start : start + DELETE_BATCH_SIZE]

            @async_wrap
            def _delete_batch(keys: list[str] = batch) -> dict[str, Any]:
                return self._client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
                )

            try:
                response = await _delete_batch()
            except (ClientError, BotoCoreError) as e:
                raise classify_storage_error(e, "delete", ", ".join(batch)) from e

            errors = response.get("Errors") or []
            if errors:
                failed = ", ".join(str(err.get("Key")) for err in errors)
                raise StorageOperationError(f"Failed to delete objects: {failed}")

        logger.info("Deleted %d objects", len(object_keys))

    async def file_exists(self, object_key: str) -> bool:
        """
        Check whether an object exists using head_object.

        Raises:
            StorageOperationError: If the check fails for a reason other than 404
        """

        @async_wrap
        def _head() -> dict[str, Any]:
            return self._client.head_object(Bucket=self.bucket_name, Key=object_key)

        try:
            await _head()
        except (ClientError, BotoCoreError) as e:
            error = classify_storage_error(e, "inspect", object_key)
            if isinstance(error, StorageNotFoundError):
                return False
            raise error from e
        return True


__all__ = [
    "StorageService",
    "StorageServiceError",
    "StorageConnectionError",
    "StorageCredentialsError",
    "StorageOperationError",
    "StorageTransientError",
    "StorageNotFoundError",
    "async_wrap",
    "classify_storage_error",
]
