"""Error taxonomy for the payment workflow.

Every error carries the HTTP status it maps to, so route code can just let
them propagate and the exception handler in ``amcpay.main`` renders them.
"""


class AmcPayError(Exception):
    """Base class."""

    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationError(AmcPayError):
    status_code = 400


class VerificationError(AmcPayError):
    status_code = 400

    def __init__(self, message: str = "Payment verification failed"):
        super().__init__(message, verified=False)


class AmountValidationError(AmcPayError):
    status_code = 400


class AuthenticationError(AmcPayError):
    status_code = 401


class NotFoundError(AmcPayError):
    status_code = 404


class ConflictError(AmcPayError):
    status_code = 409


class ServiceError(AmcPayError):
    status_code = 500


class ConfigurationError(ServiceError):
    def __init__(self, message: str, missing=None):
        # Names of missing settings go to the log, not to the client.
        super().__init__(message)
        self.missing = missing or []


class GatewayError(ServiceError):
    pass
