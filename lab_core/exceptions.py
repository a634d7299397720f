# lab_core/exceptions.py
from rest_framework import status
from rest_framework.exceptions import APIException


class Conflict(APIException):
    """409: stale version, already in the target state, duplicate name."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The resource was modified or is already in the requested state."
    default_code = "conflict"
