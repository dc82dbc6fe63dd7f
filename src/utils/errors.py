# error taxonomy shared by every storefront component


class StorefrontError(Exception):
    """Base class for all storefront failures."""


class AuthRequired(StorefrontError):
    """The operation needs a signed-in session and there is none."""

    def __init__(self, message: str = "User must be authenticated") -> None:
        super().__init__(message)


class AdminRequired(StorefrontError):
    """The current session does not carry the admin role."""

    def __init__(self, message: str = "Admin access required") -> None:
        super().__init__(message)


class ValidationError(StorefrontError, ValueError):
    """Missing or malformed input, e.g. an empty cart at checkout."""


class InvalidTransition(ValidationError):
    """An order status change that the order state machine does not allow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move order from '{current}' to '{target}'.")
        self.current = current
        self.target = target


class RemoteError(StorefrontError):
    """
    Non-success response from the remote platform.

    status is the HTTP status code, or 0 when no response was received.
    """

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"[{status}] {message}")
        self.status = status
        self.message = message


class StorageCorruption(StorefrontError):
    """A persisted record could not be decoded."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Stored record '{key}' is corrupted: {reason}")
        self.key = key


class PaymentCancelled(StorefrontError):
    """The payer closed the payment widget before completing payment."""

    def __init__(self, message: str = "Payment window closed") -> None:
        super().__init__(message)


class PaymentVerificationFailed(StorefrontError):
    """The server did not confirm the payment."""

    def __init__(self, message: str = "Payment verification failed") -> None:
        super().__init__(message)
