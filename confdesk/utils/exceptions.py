"""Custom exception classes."""


class NotFoundError(Exception):
    """Raised when a document doesn't exist."""
    pass


class RegistrantNotFoundError(NotFoundError):
    """Raised when registration ID doesn't exist."""
    pass


class AbstractNotFoundError(NotFoundError):
    """Raised when abstract ID doesn't exist."""
    pass


class ValidationError(Exception):
    """Raised when data fails validation."""
    pass


class AuthenticationError(Exception):
    """Raised when login credentials invalid or no session exists."""
    pass


class PermissionDeniedError(Exception):
    """Raised when the current role may not perform an action."""
    pass


class PricingNotConfiguredError(Exception):
    """Raised when no pricing tier applies and no regular tier exists."""
    pass


class InvalidTransitionError(Exception):
    """Raised when a registration status change is not allowed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change status from '{current}' to '{target}'")


class PaymentVerificationError(Exception):
    """Raised when a gateway payment cannot be verified."""
    pass
