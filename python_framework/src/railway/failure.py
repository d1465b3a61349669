"""
Failure description — structured error information for the failure track.

An ErrorCode classifies the failure (and maps naturally to an HTTP status);
the FailureDescription carries the message, the originating exception and
the moment it happened.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Optional


@unique
class ErrorCode(Enum):
    """Error classes of the failure track, grouped by the HTTP status they map to."""

    # --- Client-side errors (4xx HTTP range) ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Input that cannot be interpreted, e.g. a malformed trust list (→ 400/422)."""

    BUSINESS_RULE_ERROR = "BUSINESS_RULE_ERROR"
    """A domain constraint refused the operation, e.g. an empty publish (→ 409)."""

    # --- Server-side errors (5xx HTTP range) ---
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Infrastructure issues such as filesystem errors (→ 500)."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """Remote endpoint unreachable or answering with an error (→ 502)."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected/unclassified failures (→ 500)."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "Trust list is empty")
    >>> desc.code
    <ErrorCode.VALIDATION_ERROR: 'VALIDATION_ERROR'>
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__))
        return f"{self.message}\n{tb}"
