"""
Commerce platform errors mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class CommerceRequestError(BusinessException):
    """The platform answered and refused the request (4xx or GraphQL userErrors)."""

    def __init__(self, message: str, *, provider: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "status_code": status_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.COMMERCE_REJECTED,
            message=message,
            error_type="CommerceRequestError",
            details=full_details,
        )
        self.status_code = status_code
