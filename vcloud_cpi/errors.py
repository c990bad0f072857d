"""
Error hierarchy for the vCloud CPI core.

Error Hierarchy:
- VCloudError: base for everything raised by this package
  - VCloudConnectionError: transport failure after the retry budget
  - ApiError: HTTP error answer from vCloud Director (carries status_code)
  - AuthenticationError: versions/login/info bootstrap failed
  - ObjectNotFoundError: named entity or link is absent (never retried)
  - TaskFailedError: a polled task ended in error/canceled/aborted
  - TaskTimeoutError: polling exceeded wait_max (task may still be running)
  - TaskStateError: tasks left in an inconsistent non-terminal state
  - UnsupportedOperationError: CPI operation not provided

Usage:
    from vcloud_cpi.errors import ObjectNotFoundError

    raise ObjectNotFoundError(f"Invalid virtual datacenter name: {name}")
"""

from typing import Optional


class VCloudError(Exception):
    """Base exception for vCloud client errors."""
    pass


class VCloudConnectionError(VCloudError):
    """Cannot reach vCloud Director."""
    pass


class ApiError(VCloudError):
    """vCloud Director answered with an HTTP error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(VCloudError):
    """Session establishment failed."""
    pass


class ObjectNotFoundError(VCloudError):
    """Requested entity does not exist."""
    pass


class TaskFailedError(VCloudError):
    """A remote task finished unsuccessfully."""
    pass


class TaskTimeoutError(VCloudError):
    """Gave up waiting for a remote task; it may still be running."""
    pass


class TaskStateError(VCloudError):
    """Entity reports tasks in an unexpected non-terminal state."""
    pass


class UnsupportedOperationError(VCloudError):
    """CPI operation is not implemented by this cloud."""

    def __init__(self, operation: str, cloud: str = "VCloud"):
        super().__init__(f"`{operation}' is not implemented by {cloud}")
        self.operation = operation
