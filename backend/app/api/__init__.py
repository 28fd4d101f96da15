"""
NaviStream API Package.

Endpoints are versioned under URL prefixes:
    - v1/: Version 1 API endpoints (/api/v1)
        - videos.py: Upload pipeline and video record operations
"""
