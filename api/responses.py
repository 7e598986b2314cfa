"""
Conduit - Server Response Envelope

Uniform JSON envelope for handler responses:

    {
        "statusCode": 200,
        "statusMessage": "OK",
        "statusDescription": "Request fulfilled, document follows",
        "result": {...}
    }
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Dict, Optional

from starlette.responses import JSONResponse


class ServerResponse:
    """Builds enveloped JSON responses."""

    HTTP_OK = 200
    HTTP_CREATED = 201
    HTTP_MOVED_PERMANENTLY = 301
    HTTP_BAD_REQUEST = 400
    HTTP_UNAUTHORIZED = 401
    HTTP_PAYMENT_REQUIRED = 402
    HTTP_NOT_FOUND = 404
    HTTP_METHOD_NOT_ALLOWED = 405
    HTTP_CONFLICT = 409
    HTTP_TOO_LARGE = 413
    HTTP_TOO_MANY_REQUESTS = 429
    HTTP_SERVER_ERROR = 500
    HTTP_SERVICE_UNAVAILABLE = 503

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        self.headers = dict(headers or {})

    @staticmethod
    def describe(http_code: int) -> tuple:
        """``(message, description)`` for a status code."""
        try:
            status = HTTPStatus(http_code)
        except ValueError:
            return "Unknown status", "Unknown status code"
        return status.phrase, status.description

    def create_response_object(self, http_code: int, data: Any = None) -> Dict[str, Any]:
        message, description = self.describe(http_code)
        return {
            "statusCode": http_code,
            "statusMessage": message,
            "statusDescription": description,
            "result": data if data is not None else {},
        }

    def send_response(self, http_code: int, data: Any = None) -> JSONResponse:
        return JSONResponse(
            self.create_response_object(http_code, data),
            status_code=http_code,
            headers=self.headers or None,
        )
