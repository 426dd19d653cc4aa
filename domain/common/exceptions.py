"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。

Reconciliation taxonomy:
- DomainValidationException: bad request, nothing was touched
- UpstreamAuthError: signature/secret failure, rejected and never retried
- ReferenceResolutionError: event cannot be mapped to a commerce object
- UpstreamTransientError: network/5xx, the whole handler may be retried
- ReconciliationError: one system moved money and the other did not
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
        code: int = BusinessCode.PARAM_VALIDATION_ERROR,
        error_type: str = "DomainValidationError",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class NotFoundException(BusinessException):
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{resource} not found",
            error_type="NotFound",
            details={"resource": resource, "id": identifier},
        )


class PriceLookupFailed(DomainValidationException):
    def __init__(self, item_ids: list[str], reason: str = "Item could not be priced"):
        super().__init__(
            reason,
            field="lines",
            details={"item_ids": item_ids},
            code=PaymentCode.PRICE_LOOKUP_FAILED,
            error_type="PriceLookupFailed",
        )


class RefundQuantityExceeded(DomainValidationException):
    def __init__(self, line_item_id: str, requested: int, purchased: int):
        super().__init__(
            f"Refund quantity for line {line_item_id} exceeds purchased quantity",
            field="lines",
            details={"line_item_id": line_item_id, "requested": requested, "purchased": purchased},
            code=PaymentCode.REFUND_QUANTITY_EXCEEDED,
            error_type="RefundQuantityExceeded",
        )


class ZeroAmountRefund(DomainValidationException):
    def __init__(self, order_id: str, amount: str):
        super().__init__(
            "Calculated refund amount must be greater than zero",
            details={"order_id": order_id, "amount": amount},
            code=PaymentCode.ZERO_AMOUNT_REFUND,
            error_type="ZeroAmountRefund",
        )


class UpstreamAuthError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="UpstreamAuthError",
            details=full_details,
        )


class UpstreamTransientError(BusinessException):
    def __init__(self, message: str, *, provider: str, status_code: int | None = None):
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="UpstreamTransientError",
            details={"provider": provider, "status_code": status_code},
        )


class ReferenceResolutionError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict] = None,
        code: int = PaymentCode.REFERENCE_UNRESOLVABLE,
        error_type: str = "ReferenceResolutionError",
    ):
        super().__init__(code=code, message=message, error_type=error_type, details=details)


class UnresolvableReference(ReferenceResolutionError):
    def __init__(self, artifact_id: str, *, missing_lines: Optional[list[int]] = None):
        super().__init__(
            "Payment artifact carries no usable commerce back-reference",
            details={"artifact_id": artifact_id, "missing_lines": missing_lines or []},
            error_type="UnresolvableReference",
        )


class OriginalPaymentNotFound(ReferenceResolutionError):
    def __init__(self, order_id: str, reason: str):
        super().__init__(
            f"Original payment not found for order {order_id}: {reason}",
            details={"order_id": order_id},
            code=PaymentCode.ORIGINAL_PAYMENT_NOT_FOUND,
            error_type="OriginalPaymentNotFound",
        )


class ReconciliationError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict] = None,
        code: int = PaymentCode.RECONCILIATION_REQUIRED,
        error_type: str = "ReconciliationError",
    ):
        super().__init__(code=code, message=message, error_type=error_type, details=details)


class PartialExecutionFailure(ReconciliationError):
    def __init__(self, *, order_id: str, processor_refund_id: str, amount: str, currency: str, cause: str):
        super().__init__(
            "Processor refund succeeded but the commerce refund was not recorded",
            details={
                "order_id": order_id,
                "processor_refund_id": processor_refund_id,
                "amount": amount,
                "currency": currency,
                "cause": cause,
            },
            code=PaymentCode.PARTIAL_EXECUTION,
            error_type="PartialExecutionFailure",
        )
