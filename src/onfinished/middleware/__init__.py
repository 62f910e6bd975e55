"""
Handler wrappers built on completion tracking.

    AccessLogger   one access log line per request, written on completion
"""

from .logging import AccessLogger, RequestLog

__all__ = ["AccessLogger", "RequestLog"]
