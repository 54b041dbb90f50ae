"""
Service-layer exceptions.

Services raise these instead of ``HTTPException`` so they stay usable from
scripts and tests; ``backend.app`` maps them onto JSON responses.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code: int = 500
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class BadRequestError(ServiceError):
    status_code = 400
    default_detail = "Bad request"


class ForbiddenError(ServiceError):
    status_code = 403
    default_detail = "Access denied"


class NotFoundError(ServiceError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    default_detail = "Conflict"


class PaymentGatewayError(ServiceError):
    status_code = 502
    default_detail = "Payment provider error"
