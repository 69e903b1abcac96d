"""Middleware package."""

from taskhub.middleware.logging import LoggingMiddleware
from taskhub.middleware.request_id import RequestIDMiddleware

__all__ = ["LoggingMiddleware", "RequestIDMiddleware"]
