from fastapi import status
from typing import Any, Dict, List, Optional


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class ReturnFlowError(APIError):
    """Base for every domain failure; `code` lets the UI tell the kinds apart."""

    code = "return_flow_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any):
        self.details: Dict[str, Any] = details
        super().__init__(
            status_code=type(self).status_code,
            message=message,
            errors=[{"code": self.code, **details}],
        )


class ValidationError(ReturnFlowError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ReturnFlowError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class AlreadyReturnedError(ReturnFlowError):
    code = "already_returned"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, barcode: str):
        super().__init__(f"Barcode {barcode} has already been returned", barcode=barcode)
        self.barcode = barcode


class OverReturnError(ReturnFlowError):
    code = "over_return"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, requested: int, available: int, order_item_id: Optional[int] = None):
        super().__init__(
            f"Trying to return {requested} but only {available} available",
            requested=requested,
            available=available,
            order_item_id=order_item_id,
        )
        self.requested = requested
        self.available = available


class InvalidTransitionError(ReturnFlowError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, current_status=current_status)
        self.current_status = current_status


class OverAllocationError(ReturnFlowError):
    code = "over_allocation"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, requested, remaining):
        # requested / remaining are Money
        super().__init__(
            f"Refund split {requested} exceeds remaining {remaining}",
            requested=float(requested.to_decimal()),
            remaining=float(remaining.to_decimal()),
            currency=remaining.currency,
        )
        self.requested = requested
        self.remaining = remaining


class ExchangeIncompleteError(ReturnFlowError):
    code = "exchange_incomplete"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, return_case_id: int, refund_id: Optional[int], attempt_id: int, reason: str):
        super().__init__(
            f"Return refunded but replacement order failed: {reason}",
            return_case_id=return_case_id,
            refund_id=refund_id,
            attempt_id=attempt_id,
        )
        self.return_case_id = return_case_id
        self.refund_id = refund_id
        self.attempt_id = attempt_id


class OrderServiceError(Exception):
    """Raised by order gateways when the order subsystem fails."""
