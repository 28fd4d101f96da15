"""
Services module for the NaviStream backend application.

- upload_service: Upload pipeline orchestrator and its per-request state machine
- staging_service: Request-unique local staging of upload bytes
- remote_asset_service: Durable upload with bounded retry of transient errors
- storage_service: S3-compatible storage operations with MinIO/AWS S3
- metadata_service: OpenCV video probing and frame extraction
- derivative_service: Derived object keys and background derivative generation
- video_service: Video record persistence and record operations
- orphan_ledger: Logging and ledger of remote assets without a record

All services are async and receive their collaborators through their
constructors, so routers wire them up with FastAPI dependencies.
"""
