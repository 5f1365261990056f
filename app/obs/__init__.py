"""Observability package.

Request middleware, in-process metrics, structured logging and request-scoped
context for the trip search service.
"""

__all__ = [
    "middleware",
    "metrics",
    "logger",
    "context",
]
