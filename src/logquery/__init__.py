"""
LogQuery - log search query service for dashboards

Translates dashboard log queries into the remote search syntax, fetches
pages under a shared concurrency gate with rate-limit backoff, and turns
the results into log-line and volume-histogram frames.
"""

__version__ = "0.1.0"

from .main import app

__all__ = ["app"]
