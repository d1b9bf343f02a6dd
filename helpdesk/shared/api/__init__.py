"""
Shared API Layer
================

HTTP middleware and exception handlers used by every router.
"""

from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    MetricsMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
    install_middleware,
)

__all__ = [
    "CorrelationIDMiddleware",
    "MetricsMiddleware",
    "LoggingMiddleware",
    "application_exception_handler",
    "global_exception_handler",
    "install_middleware",
]
