"""
Transport components for httptask.

This package provides the transport interface the dispatcher receives
callbacks from, an HTTP/1.1 implementation, and a mock for tests.
"""

from .base import Transport
from .http11 import H11Transport
from .mock import MockResponse, MockTransport

__all__ = [
    "Transport",
    "H11Transport",
    "MockResponse",
    "MockTransport",
]
