"""HTTP middleware."""

from fixit.middleware.timing import timing_middleware

__all__ = ["timing_middleware"]
