"""Error taxonomy of the order engine.

Every error the engine raises on purpose derives from ``OrderError`` and
carries the HTTP status it maps to, a stable machine-readable ``code`` and
optional details. Anything else escaping a unit of work is wrapped in
``OrderFailure`` after the rollback.
"""

from typing import Any, Dict, Optional


class OrderError(Exception):
    status_code = 400
    code = "order_error"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        body.update(self.details)
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationFailed(OrderError):
    code = "validation_failed"


class ProductUnavailable(OrderError):
    code = "product_unavailable"


class InsufficientStock(OrderError):
    code = "insufficient_stock"


class CouponRejected(OrderError):
    code = "coupon_rejected"


class IllegalTransition(OrderError):
    code = "illegal_transition"


class OrderNotCancellable(OrderError):
    code = "order_not_cancellable"


class OrderNotPayable(OrderError):
    code = "order_not_payable"


class OrderNotFound(OrderError):
    status_code = 404
    code = "order_not_found"


class PaymentRejected(OrderError):
    code = "payment_failed"


class StockConflict(OrderError):
    status_code = 409
    code = "stock_conflict"
    retryable = True


class OrderConflict(OrderError):
    status_code = 409
    code = "order_conflict"
    retryable = True


class PaymentAmbiguous(OrderError):
    status_code = 502
    code = "payment_gateway_error"


class OrderFailure(OrderError):
    status_code = 500
    code = "internal_error"
