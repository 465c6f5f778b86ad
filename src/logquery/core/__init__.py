"""
Core query pipeline components.

This package contains the pieces a query flows through:
- Query translation to the remote search syntax
- Result caching keyed by query fingerprint
- Page fetching behind a shared admission gate
- Response normalization and label sanitization
- Volume histogram bucketing and frame building
- Metrics collection and health checks
"""
