"""Error taxonomy shared by the transport, retry wrapper, store and workflow."""


class ShopFloorError(Exception):
    """Base exception for engine operations."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(ShopFloorError):
    """Input rejected before any network call. Always user-correctable."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input")


class HttpError(ShopFloorError):
    """Backend answered with a non-2xx status."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"HTTP {status}")
        self.status = status

    @property
    def is_transient(self) -> bool:
        return self.status >= 500


class NetworkError(ShopFloorError):
    """The request never got an HTTP answer (connect/read failure, timeout)."""

    is_transient = True


class RejectedError(ShopFloorError):
    """A 2xx response whose body carries an ``error`` key."""


class StoreClosedError(ShopFloorError):
    """An operation was attempted after the store was closed."""


class RetryExhaustedError(ShopFloorError):
    """Every attempt failed transiently; carries the last error's message."""

    def __init__(self, message: str, attempts: int,
                 last_error: ShopFloorError | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_transient(error: BaseException) -> bool:
    """True for failures worth retrying: 5xx responses and network errors."""
    if isinstance(error, HttpError):
        return error.is_transient
    return isinstance(error, NetworkError)
