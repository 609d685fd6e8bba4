"""
TableDB Test Suite.

This package contains:
- unit/: Unit tests (in-memory blob store, fake S3 client)
- integration/: Service-level scenarios and the HTTP gateway
"""
