"""Exception types raised by AccessWatch components."""


class AccessWatchError(Exception):
    """Base class for all AccessWatch errors."""


class AccessEventNotFound(AccessWatchError):
    """Raised when an access event id does not exist in the store."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Access event not found: {event_id}")


class StoreError(AccessWatchError):
    """Raised when the access log store backend fails."""


class NotificationError(AccessWatchError):
    """Raised when a notification sink fails to record a notification."""


class ConfigurationError(AccessWatchError):
    """Raised for invalid or incomplete configuration."""
