# secondact/exceptions.py
"""
Error taxonomy for the marketplace API and the FastAPI handlers that turn
it into JSON responses.

Every error body has the same shape:

    {"error": "<message>", "code": "<CODE>", "errors": {"field": ["..."]}}

``errors`` is only present for field-attributed failures.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

FieldErrors = Dict[str, List[str]]


class MarketplaceError(Exception):
    """Base exception; subclasses fix the status code and machine code."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, errors: Optional[FieldErrors] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailedError(MarketplaceError):
    """Malformed input; always carries per-field messages when possible."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, errors: FieldErrors, message: str = "Validation failed"):
        super().__init__(message, errors)


class BadRequestError(MarketplaceError):
    """A well-formed request the current state does not allow."""

    status_code = 400
    code = "BAD_REQUEST"


class AuthError(MarketplaceError):
    status_code = 401
    code = "UNAUTHENTICATED"


class AuthorizationError(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(MarketplaceError):
    status_code = 409
    code = "CONFLICT"


class InventoryConflictError(MarketplaceError):
    """Stale inventory at checkout. Reported as 400 to match the storefront client."""

    status_code = 400
    code = "COSTUMES_UNAVAILABLE"

    def __init__(self, message: str = "Some costumes are no longer available"):
        super().__init__(message)


class PaymentsNotConfiguredError(MarketplaceError):
    status_code = 503
    code = "PAYMENTS_NOT_CONFIGURED"

    def __init__(self, message: str = "Payments not configured"):
        super().__init__(message)


# ---- Handlers ----------------------------------------------------------------

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def field_errors_from_pydantic(errors: List[Dict[str, Any]]) -> FieldErrors:
    """
    Flatten pydantic error dicts into {field: [messages]}.

    The request location prefix ("body", "query") is dropped and nested paths
    are dotted, e.g. ``shippingAddress.city``.
    """
    out: FieldErrors = {}
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        field = ".".join(_camel(p) for p in loc) or "_root"
        msg = err.get("msg", "Invalid value")
        # custom validators raise ValueError("...") which pydantic prefixes
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        out.setdefault(field, []).append(msg)
    return out


async def marketplace_exception_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    err = ValidationFailedError(field_errors_from_pydantic(exc.errors()))
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR"},
    )
