"""
Error types for Cerberus.

Two kinds of failure reach the operator:
- UserFault: something the operator can fix (bad flags, unreachable node,
  access denied). Rendered verbatim.
- DevFault: something unexpected (payload of the wrong shape, protocol
  decode failure). Rendered with a request to file an issue.

Invariants:
    - All errors surfaced by the CLI inherit from CerberusError
    - The first failure aborts the whole command; nothing is retried
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any, Dict, Optional

ISSUES_URL = "https://github.com/YoEight/cerberus/issues/new"


class CerberusError(Exception):
    """Base exception for all Cerberus errors.

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
        self.code = code or "CERBERUS_ERROR"
        self.details = details or {}

    def render(self) -> str:
        """Text written to stderr when the command fails."""
        return self.message


class UserFault(CerberusError):
    """The operator supplied something invalid, or the environment refused.

    Raised when:
    - No source selection (or more than one) was given
    - --top is not a positive number, or is combined with --recent
    - An endpoint cannot be parsed or reached
    - The log service denies access
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="USER_FAULT", details=details)


class DevFault(CerberusError):
    """An unexpected condition that points at a bug.

    Raised when:
    - A record payload does not have the expected shape
    - A link payload cannot be decoded
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="DEV_FAULT", details=details)

    def render(self) -> str:
        return (
            "You encountered an application unexpected error. Please "
            f"report an issue there {ISSUES_URL}:\n"
            f"Unexpected error >>= {self.message}"
        )
