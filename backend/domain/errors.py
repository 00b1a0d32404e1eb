"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the exception handler
in main.py. Each carries a stable `code` for frontend consumers.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    code = "domain_error"

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}


# ── Categories ──────────────────────────────────────────────────────

class NotFoundError(DomainError):
    """Resource not found (404)."""
    code = "not_found"

    def __init__(self, resource_type: str, identifier, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400)."""
    code = "invalid_input"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    code = "permission_denied"

    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class ConflictError(DomainError):
    """Resource conflict (409)."""
    code = "conflict"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class GatewayError(DomainError):
    """Payment provider failure (5xx)."""
    code = "provider_error"

    def __init__(self, message: str, status_code: int = status.HTTP_502_BAD_GATEWAY, details: dict | None = None):
        super().__init__(message, status_code=status_code, details=details)


# ── Users / orders ──────────────────────────────────────────────────

class UserNotFound(NotFoundError):
    code = "user_not_found"

    def __init__(self, user_id):
        super().__init__("User", user_id)


class OrderNotFound(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id):
        super().__init__("Order", order_id)


class InvalidTier(ValidationError):
    code = "invalid_tier"

    def __init__(self, service_type: str):
        super().__init__(f"Invalid service type: {service_type!r}", field="serviceType")


class InvalidEmail(ValidationError):
    code = "invalid_email"

    def __init__(self, email: str):
        super().__init__(f"Malformed email address: {email!r}", field="email")


class OrderNotOwned(PermissionDeniedError):
    code = "order_not_owned"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} does not belong to this user")


class OrderAlreadyPending(ConflictError):
    """
    The user already holds an active order.

    The existing order rides along so the caller can resume it.
    """
    code = "order_already_pending"

    def __init__(self, order, details: dict | None = None):
        super().__init__(
            "You have a pending order. Please complete or cancel it first.",
            details=details,
        )
        self.order = order


class DuplicateOrderId(ConflictError):
    code = "duplicate_order_id"

    def __init__(self, order_id: str):
        super().__init__(f"Order id already exists: {order_id}")
        self.order_id = order_id


class InvalidTransition(ConflictError):
    code = "invalid_transition"

    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(
            f"Order {order_id} cannot move from {current} to {target}",
            details={"from": current, "to": target},
        )


# ── Payment provider ────────────────────────────────────────────────

class ProviderUnavailable(GatewayError):
    """Provider unreachable or timed out (503)."""
    code = "provider_unavailable"

    def __init__(self, message: str = "Payment provider unavailable", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class ProviderRejected(GatewayError):
    """Provider refused the request (502)."""
    code = "provider_rejected"

    def __init__(self, message: str = "Payment provider rejected the request", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)
