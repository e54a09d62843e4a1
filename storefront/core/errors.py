"""
Error taxonomy for the storefront API.

Every business failure raised from the service layer is a StoreError; the
API layer renders it as {"success": false, "error": ..., "code": ...}.
Coupon validation is the exception: it returns a result object instead.
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 400
    code: str = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(StoreError):
    status_code = 400
    code = "VALIDATION_ERROR"


class Unauthorized(StoreError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(StoreError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(StoreError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(StoreError):
    status_code = 409
    code = "CONFLICT"


class InsufficientStock(Conflict):
    code = "INSUFFICIENT_STOCK"


class PricingMismatch(Conflict):
    code = "PRICING_MISMATCH"


class CouponRejected(Conflict):
    code = "COUPON_REJECTED"


class AccountLocked(StoreError):
    status_code = 423
    code = "ACCOUNT_LOCKED"


class PaymentError(StoreError):
    status_code = 502
    code = "PAYMENT_ERROR"


class SignatureVerificationError(StoreError):
    status_code = 400
    code = "INVALID_SIGNATURE"


class ServiceUnavailable(StoreError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
