# pathlab/renderers.py
from __future__ import annotations

from typing import Any

from rest_framework.renderers import JSONRenderer


ENVELOPE_KEYS = {"data", "meta"}


def wrap_envelope(data: Any) -> Any:
    """
    Normalize a successful payload into {"data": ..., "meta": {...}}.

    Payloads already shaped as an envelope pass through untouched.
    """
    if data is None:
        return None

    if isinstance(data, dict) and "data" in data and set(data) <= ENVELOPE_KEYS:
        data.setdefault("meta", {})
        return data

    if isinstance(data, (list, tuple)):
        return {"data": list(data), "meta": {"count": len(data)}}

    return {"data": data, "meta": {}}


class EnvelopeJSONRenderer(JSONRenderer):
    """
    JSON renderer enforcing the response envelope at the API boundary.

    Error responses are shaped by pathlab.exceptions and are not wrapped.
    """

    def render(self, data, accepted_media_type=None, renderer_context=None):
        response = (renderer_context or {}).get("response")
        if response is not None and response.status_code < 400 and not getattr(response, "exception", False):
            data = wrap_envelope(data)
        return super().render(data, accepted_media_type, renderer_context)
