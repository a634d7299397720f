# pathlab/exceptions.py
from __future__ import annotations

import logging
from typing import Any

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework.exceptions import ValidationError
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def _first_message(detail: Any) -> str:
    if isinstance(detail, dict):
        if "detail" in detail:
            return str(detail["detail"])
        for value in detail.values():
            return _first_message(value)
        return "Invalid request."
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else "Invalid request."
    return str(detail)


def envelope_exception_handler(exc, context):
    """
    Render every API error as {"message": str, "errors": detail}.

    Model-level ValidationError (raised from clean()/save()) becomes a 400.
    """
    if isinstance(exc, DjangoValidationError):
        if hasattr(exc, "error_dict"):
            exc = ValidationError(detail=exc.message_dict)
        else:
            exc = ValidationError(detail=exc.messages)

    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.error(
            "Unhandled error in %s: %s",
            view.__class__.__name__ if view else "unknown view",
            exc,
        )
        return None

    detail = response.data
    response.data = {
        "message": _first_message(detail),
        "errors": detail,
    }
    return response
