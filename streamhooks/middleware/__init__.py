"""HTTP middleware."""

from streamhooks.middleware.session import DatabaseSessionMiddleware

__all__ = ["DatabaseSessionMiddleware"]
