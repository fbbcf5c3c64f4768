"""
Error types for the TSDB SDK.

This module defines all exception types raised by the SDK:
- TsdbError: Base exception
- TsdbConnectionError: Socket closed, unreachable, or authentication rejected
- TsdbTimeoutError: No response within the request timeout

Invariants:
    - All errors inherit from TsdbError
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TsdbError(Exception):
    """Base exception for all TSDB SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TSDB_ERROR"
        self.details = details or {}


class TsdbConnectionError(TsdbError):
    """Connection to the TSDB server failed or was closed.

    The server closes the socket instead of answering when a request is
    rejected or the api key does not match, so both surface here.
    """

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"url": url})
        self.url = url


class TsdbTimeoutError(TsdbError):
    """The server did not answer a request in time."""

    def __init__(self, message: str, request_id: Optional[str] = None) -> None:
        super().__init__(message, code="TIMEOUT", details={"request_id": request_id})
        self.request_id = request_id
