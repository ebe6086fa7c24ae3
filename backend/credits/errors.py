"""
Credits exceptions.

Quota denial and bad passcodes are ordinary result values (see models.py);
only the conditions below are raised.
"""


class TransientStoreFailure(Exception):
    """Raised when the durable store is unreachable or aborts an operation.

    The failed operation had no effect and is safe to retry.
    """

    def __init__(self, operation: str, details: str = None):
        self.operation = operation
        self.details = details
        message = f"Credit store failure during {operation}"
        if details:
            message += f": {details}"
        super().__init__(message)


class InvalidPrefixError(ValueError):
    """Raised when a passcode prefix is empty, too long or not alphanumeric."""
    pass


class DuplicatePasscodeError(Exception):
    """Raised by a store when an inserted passcode collides with an existing code."""
    pass
