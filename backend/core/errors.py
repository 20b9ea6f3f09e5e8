"""
FulfilOps error types.

Every error carries the HTTP status it should surface as; the API layer
renders them as ``{"error": message}``.
"""


class FulfilmentError(Exception):
    """Base class for errors raised by fulfilment services."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(FulfilmentError):
    status_code = 404


class ConfigurationError(FulfilmentError):
    """A gateway or courier is not configured for this caller."""

    status_code = 400


class SignatureError(FulfilmentError):
    status_code = 401


class InsufficientStockError(FulfilmentError):
    status_code = 409


class GatewayError(FulfilmentError):
    """An upstream API answered with a non-2xx status."""

    status_code = 500

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        details: dict | str | None = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.details = details
