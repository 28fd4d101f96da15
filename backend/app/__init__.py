"""
NaviStream Backend Application Package

FastAPI application for the NaviStream video platform: upload admission,
local staging, durable storage in an S3-compatible bucket, playback
derivatives and the video records built on top of them.

Package Structure:
- api/: REST API endpoints organized by version (v1)
- client/: Upload client with progress reporting
- core/: Core infrastructure (database, auth, error taxonomy)
- models/: Pydantic data models
- services/: Upload pipeline and record operations
- utils/: Admission rules and logging
"""

__version__ = "1.0.0"
__app_name__ = "NaviStream"
