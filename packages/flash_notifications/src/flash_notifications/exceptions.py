class NotificationError(Exception):
    """Base class for all Flash Notifications exceptions."""


class InvalidSpecification(NotificationError, ValueError):
    """Raised when notification options cannot be parsed into a valid schedule."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid notification option '{field}': {message}")


class Unsatisfiable(NotificationError):
    """Raised when a match trigger can never produce another fire time."""


class NotFound(NotificationError, LookupError):
    """Raised when an operation references an unknown notification id."""

    def __init__(self, notification_id: int):
        self.notification_id = notification_id
        super().__init__(f"Notification '{notification_id}' not found")


class ExternalServiceFailure(NotificationError, RuntimeError):
    """Raised when a call into the alarm, presentation or persistence service fails."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} failure: {message}")
