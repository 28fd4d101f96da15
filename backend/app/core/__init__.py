"""
Core infrastructure for the NaviStream backend application.

- auth: Bearer token verification and the request-scoped RequestContext
- database: MongoDB async client with Motor driver and connection pooling
- errors: Upload pipeline and video record exception hierarchy
"""
