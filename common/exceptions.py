from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.db.models import ProtectedError
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.views import set_rollback

logger = logging.getLogger(__name__)

SERVER_ERROR_MESSAGE = "An unexpected error occurred."
VALIDATION_MESSAGE = "Validation failed."
CONFLICT_MESSAGE = "The request conflicts with data that already exists."

# Stable codes clients switch on.
ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (exceptions.ValidationError, "validation_error"),
    (exceptions.NotAuthenticated, "not_authenticated"),
    (exceptions.AuthenticationFailed, "authentication_failed"),
    (exceptions.PermissionDenied, "permission_denied"),
    (exceptions.NotFound, "not_found"),
    (exceptions.MethodNotAllowed, "method_not_allowed"),
    (exceptions.NotAcceptable, "not_acceptable"),
    (exceptions.UnsupportedMediaType, "unsupported_media_type"),
    (exceptions.ParseError, "parse_error"),
    (exceptions.Throttled, "throttled"),
)


def error_payload(*, code: str, message: str, errors: Any = None, status_code: int) -> dict[str, Any]:
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def error_response(*, code: str, message: str, errors: Any = None, status_code: int = status.HTTP_400_BAD_REQUEST) -> Response:
    return Response(error_payload(code=code, message=message, errors=errors, status_code=status_code), status=status_code)


def error_code(exc: Exception) -> str:
    for exception_type, code in ERROR_CODES:
        if isinstance(exc, exception_type):
            return code
    if isinstance(exc, exceptions.APIException):
        return str(getattr(exc, "default_code", "api_error"))
    return "internal_server_error"


def first_error_message(errors: Any, path: tuple[str, ...] = ()) -> str | None:
    """One-line summary of the first field error, e.g. ``charges.deal_amount: Amount cannot be negative.``

    Booking errors nest by form section, so the path keeps the section name.
    """
    if isinstance(errors, Mapping):
        for key, value in errors.items():
            message = first_error_message(value, path + (str(key),))
            if message:
                return message
        return None
    if isinstance(errors, (list, tuple)):
        for item in errors:
            message = first_error_message(item, path)
            if message:
                return message
        return None
    if errors is None or str(errors) == "":
        return None

    field = ".".join(part for part in path if part not in ("non_field_errors", "detail"))
    return f"{field}: {errors}" if field else str(errors)


def _as_drf_exception(exc: Exception) -> Exception:
    # Model-level validation (full_clean, validators) surfaces as a normal 400.
    if isinstance(exc, DjangoValidationError):
        detail = exc.message_dict if hasattr(exc, "error_dict") else exc.messages
        return exceptions.ValidationError(detail=detail)
    return exc


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    exc = _as_drf_exception(exc)
    response = drf_exception_handler(exc, context)

    view = context.get("view")
    view_name = type(view).__name__ if view is not None else "unknown"

    if response is None:
        if isinstance(exc, (IntegrityError, ProtectedError)):
            logger.warning("Integrity conflict in %s: %s", view_name, exc)
            set_rollback()
            return error_response(code="conflict", message=CONFLICT_MESSAGE, status_code=status.HTTP_409_CONFLICT)

        logger.exception("Unhandled API exception in %s", view_name)
        return error_response(
            code="internal_server_error",
            message=SERVER_ERROR_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    data = response.data
    if isinstance(exc, exceptions.ValidationError):
        errors = data
        message = first_error_message(data) or VALIDATION_MESSAGE
    else:
        detail = data.get("detail") if isinstance(data, Mapping) else None
        only_detail = isinstance(data, Mapping) and set(data.keys()) <= {"detail"}
        errors = None if only_detail else data
        message = str(detail or getattr(exc, "detail", "") or "Request failed.")

    response.data = error_payload(code=error_code(exc), message=message, errors=errors, status_code=response.status_code)
    return response
