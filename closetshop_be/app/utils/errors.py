"""Order domain errors.

Raised by the order service and rendered by the exception handler in
``app.main`` as ``{"detail": ..., "code": ...}``.
"""


class OrderError(Exception):
    status_code = 400
    code = "order_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(OrderError):
    code = "invalid_request"


class NotFound(OrderError):
    status_code = 404
    code = "not_found"


class Forbidden(OrderError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidTransition(OrderError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change order status from {current} to {requested}")
        self.current = current
        self.requested = requested


class DuplicatePayment(OrderError):
    status_code = 409
    code = "duplicate_payment"

    def __init__(self, transaction_id: str):
        super().__init__(f"Payment {transaction_id} has already been processed")
        self.transaction_id = transaction_id


class PaymentVerificationError(OrderError):
    """Gateway answered, but the payment does not match the order."""


class PaymentNotCompleted(PaymentVerificationError):
    code = "payment_not_completed"

    def __init__(self, status: str):
        super().__init__(f"Payment has not been completed. Status: {status}")
        self.status = status


class AmountMismatch(PaymentVerificationError):
    code = "amount_mismatch"

    def __init__(self, expected: int, actual):
        super().__init__(f"Payment amount mismatch. Expected: {expected}, actual: {actual}")
        self.expected = expected
        self.actual = actual


class GatewayUnavailable(OrderError):
    status_code = 502
    code = "gateway_unavailable"
