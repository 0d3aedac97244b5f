class GateError(Exception):
    """Base class for faults raised by the issuance and redemption engines."""

    status_code = 400
    code = "error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class Unauthorized(GateError):
    status_code = 401
    code = "unauthorized"


class Forbidden(GateError):
    status_code = 403
    code = "forbidden"


class InvalidRequest(GateError):
    code = "invalid_request"


class InvalidQuantity(InvalidRequest):
    code = "invalid_quantity"


class StoreUnavailable(GateError):
    # retryable: callers (e.g. Stripe) are expected to redeliver
    status_code = 503
    code = "store_unavailable"


class PaymentProviderError(GateError):
    status_code = 502
    code = "payment_provider_error"


class NotFound(GateError):
    # also used for records owned by someone else, so their existence never leaks
    status_code = 404
    code = "not_found"


class NotConfigured(GateError):
    status_code = 500
    code = "not_configured"
