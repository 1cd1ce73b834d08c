"""
Pulse - Exceptions.

============================================================
ERROR TAXONOMY
============================================================
- Instrumentation: never raised (collector operations are total)
- Storage: raised only when both backends fail (StorageError)
- Probe: converted to unhealthy ProbeResults inside probes and
  the registry; ProbeNotFoundError is for lookups by name
- Dispatch: captured per channel in ChannelResult, never raised
- Validation: AlertValidationError with structured field errors
- Unknown alert id: AlertNotFoundError

============================================================
"""

from typing import Any, Dict, List, Optional


class PulseError(Exception):
    """Base exception for Pulse errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and HTTP bodies."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class StorageError(PulseError):
    """
    Raised when the durable and in-memory backends both fail.

    This is the only storage failure that reaches callers.
    """

    def __init__(
        self,
        operation: str,
        original_error: Exception,
    ) -> None:
        super().__init__(
            f"Storage operation '{operation}' failed on both backends: {original_error}",
            details={"operation": operation, "original_error": str(original_error)},
        )
        self.operation = operation
        self.original_error = original_error


class ProbeNotFoundError(PulseError):
    """Raised when a probe name is not registered."""

    def __init__(self, probe_name: str) -> None:
        super().__init__(
            f"Probe '{probe_name}' not found",
            details={"probe": probe_name},
        )
        self.probe_name = probe_name


class AlertNotFoundError(PulseError):
    """Raised when an alert id does not exist."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(
            f"Alert '{alert_id}' not found",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class AlertValidationError(PulseError):
    """Raised when an alert configuration body is invalid."""

    def __init__(self, errors: List[Dict[str, Any]]) -> None:
        super().__init__("Invalid alert configuration", details={"errors": errors})
        self.errors = errors
