"""Custom exceptions for Virtual Vacation."""


class VacationError(Exception):
    """Base exception for all Virtual Vacation errors."""


class ReplySuppressed(VacationError):
    """Raised when policy says no reply must be sent.

    This is not a failure: the process exits successfully.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ConfigurationError(VacationError):
    """Exception raised for configuration related errors."""


class AliasLoopError(VacationError):
    """Exception raised when alias resolution exceeds its step bound."""


class StorageError(VacationError):
    """Exception raised when the directory store fails."""


class DeliveryError(VacationError):
    """Exception raised when a reply cannot be handed to the next hop."""
