"""Custom exceptions for DockPulse.

Every failure that crosses a service boundary is one of these. Runtime adapters
translate docker SDK errors into this hierarchy so callers never need to know
which runtime produced them.
"""

from typing import Optional


class DockPulseError(Exception):
    """Base class for all DockPulse errors.

    The ``error_class`` attribute is the stable, machine-readable category used
    by lifecycle outcomes and HTTP responses.
    """

    error_class: str = "runtime_error"

    def __init__(self, message: str, container_id: Optional[str] = None):
        self.message = message
        self.container_id = container_id
        super().__init__(message)


class ContainerNotFoundError(DockPulseError):
    """Raised when a container vanished or never existed."""

    error_class = "not_found"


class ImageNotFoundError(DockPulseError):
    """Raised when an image reference cannot be resolved by the runtime."""

    error_class = "not_found"


class RuntimeTimeoutError(DockPulseError):
    """Raised when a runtime call exceeded its time budget."""

    error_class = "timeout"


class LaunchValidationError(DockPulseError):
    """Raised when a launch request has an invalid field.

    Raised before the runtime is touched, so a validation failure never has
    side effects.
    """

    error_class = "validation"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ContainerBusyError(DockPulseError):
    """Raised when another mutation on the same container is still in flight."""

    error_class = "busy"


class RuntimeUnavailableError(DockPulseError):
    """Raised when the runtime daemon itself cannot be reached."""

    error_class = "runtime_unavailable"


class RuntimeOperationError(DockPulseError):
    """Raised when the runtime is reachable but rejected the operation.

    Typical causes are a host port that is already allocated or a container
    name conflict.
    """

    error_class = "runtime_error"
