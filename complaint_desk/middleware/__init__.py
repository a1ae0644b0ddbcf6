"""
Middleware components for request processing.

This package contains:
- Request context (request ID bound into the structured log context)
- Exception handlers mapping workflow errors to HTTP responses
"""

from complaint_desk.middleware.error_handlers import register_exception_handlers
from complaint_desk.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware", "register_exception_handlers"]
