"""
Conduit - Request Middleware

The fixed middleware layers the request pipeline assembles around user code:
- ProcessIdMiddleware: ``x-process-id`` on every response
- BodyParserMiddleware: JSON and URL-encoded bodies into ``request.state.body``
- StaticAssetsMiddleware: files from the public folder, falling through on miss
- TerminalErrorMiddleware: turns escaped exceptions into ``{"code": status}``

Errors never leak stack traces to callers. Anything that is not a 404 is
written to the application logger as fatal.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import parse_qsl

from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.staticfiles import StaticFiles

from core.errors import HTTP_NOT_FOUND, RequestError, error_status, format_error_stack
from observability.logging import AppLogger

DEFAULT_BODY_LIMIT = 100 * 1024  # 100kb
JSON_CONTENT_TYPE = "application/json"
URLENCODED_CONTENT_TYPE = "application/x-www-form-urlencoded"

_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024 ** 2, "gb": 1024 ** 3}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?\s*$", re.IGNORECASE)


# =============================================================================
# ERROR RENDERING
# =============================================================================


def render_error(
    error: BaseException,
    app_logger: AppLogger,
    status: Optional[int] = None,
) -> JSONResponse:
    """Answer ``{"code": status}``, logging the error as fatal unless it is a 404."""
    code = status if status is not None else error_status(error)
    if code != HTTP_NOT_FOUND:
        app_logger.fatal({
            "event": "error",
            "error": type(error).__name__,
            "stack": format_error_stack(error),
        })
    return JSONResponse({"code": code}, status_code=code)


class ProcessIdMiddleware(BaseHTTPMiddleware):
    """Stamp the serving process id on every response."""

    def __init__(self, app):
        super().__init__(app)
        self._pid = str(os.getpid())

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["x-process-id"] = self._pid
        return response


# =============================================================================
# BODY PARSING
# =============================================================================


def parse_size(value: Union[int, float, str, None], default: int = DEFAULT_BODY_LIMIT) -> int:
    """Parse ``100kb`` style limits; plain numbers are bytes."""
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return int(value)
    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid size limit: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


@dataclass
class BodyParserOptions:
    """Limits and urlencoded mode for BodyParserMiddleware."""

    json_limit: int = DEFAULT_BODY_LIMIT
    urlencoded_limit: int = DEFAULT_BODY_LIMIT
    urlencoded_extended: bool = False

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "BodyParserOptions":
        """
        Read ``{"json": {"limit": ...}, "urlencoded": {"extended": ..., "limit": ...}}``.

        Missing sections keep their defaults.
        """
        if not options:
            return cls()
        json_opts = options.get("json") or {}
        form_opts = options.get("urlencoded") or {}
        return cls(
            json_limit=parse_size(json_opts.get("limit")),
            urlencoded_limit=parse_size(form_opts.get("limit")),
            urlencoded_extended=bool(form_opts.get("extended", False)),
        )


def _is_json(content_type: str) -> bool:
    return content_type == JSON_CONTENT_TYPE or content_type.endswith("+json")


def _assign_nested(target: Dict[str, Any], key: str, value: str) -> None:
    """Place ``a[b][]=v`` style keys into nested dicts and lists."""
    head, _, rest = key.partition("[")
    parts = [head] + [part.rstrip("]") for part in rest.split("[")] if rest else [head]

    node: Any = target
    for index, part in enumerate(parts):
        last = index == len(parts) - 1
        if part == "" and isinstance(node, list):
            if last:
                node.append(value)
                return
            node.append({})
            node = node[-1]
            continue
        if last:
            existing = node.get(part)
            if existing is None:
                node[part] = value
            elif isinstance(existing, list):
                existing.append(value)
            else:
                node[part] = [existing, value]
            return
        next_is_list = parts[index + 1] == ""
        child = node.get(part)
        if not isinstance(child, list if next_is_list else dict):
            child = [] if next_is_list else {}
            node[part] = child
        node = child


def parse_urlencoded(body: str, extended: bool = False) -> Dict[str, Any]:
    """
    Decode a form body.

    Repeated keys collect into lists. With ``extended`` bracketed keys build
    nested objects.
    """
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(body, keep_blank_values=True, strict_parsing=False):
        if extended and "[" in key:
            _assign_nested(result, key, value)
            continue
        existing = result.get(key)
        if existing is None:
            result[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            result[key] = [existing, value]
    return result


class BodyParserMiddleware(BaseHTTPMiddleware):
    """
    Decode JSON and URL-encoded request bodies into ``request.state.body``.

    Other content types are left untouched. Oversized bodies answer 413,
    malformed ones 400.
    """

    def __init__(self, app, app_logger: AppLogger, options: Optional[BodyParserOptions] = None):
        super().__init__(app)
        self.app_logger = app_logger
        self.options = options or BodyParserOptions()

    async def dispatch(self, request: Request, call_next) -> Response:
        content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

        if _is_json(content_type):
            limit = self.options.json_limit
        elif content_type == URLENCODED_CONTENT_TYPE:
            limit = self.options.urlencoded_limit
        else:
            return await call_next(request)

        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            return render_error(RequestError("Request entity too large", status=413), self.app_logger)

        raw = await request.body()
        if len(raw) > limit:
            return render_error(RequestError("Request entity too large", status=413), self.app_logger)

        try:
            request.state.body = self._decode(raw, content_type)
        except (ValueError, UnicodeDecodeError) as e:
            return render_error(RequestError(f"Malformed request body: {e}", status=400), self.app_logger)

        return await call_next(request)

    def _decode(self, raw: bytes, content_type: str) -> Any:
        if not raw:
            return {}
        text = raw.decode("utf-8")
        if _is_json(content_type):
            return json.loads(text)
        return parse_urlencoded(text, extended=self.options.urlencoded_extended)


# =============================================================================
# STATIC ASSETS
# =============================================================================


class StaticAssetsMiddleware(BaseHTTPMiddleware):
    """Serve GET/HEAD requests from ``directory``; anything not found falls through."""

    def __init__(self, app, directory: str):
        super().__init__(app)
        self.directory = directory
        self._files = StaticFiles(directory=directory, check_dir=False)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method not in ("GET", "HEAD") or not os.path.isdir(self.directory):
            return await call_next(request)

        try:
            path = self._files.get_path(request.scope)
            return await self._files.get_response(path, request.scope)
        except StarletteHTTPException:
            return await call_next(request)


# =============================================================================
# TERMINAL ERRORS
# =============================================================================


class TerminalErrorMiddleware(BaseHTTPMiddleware):
    """Innermost layer: catches whatever the routes raised that no handler took."""

    def __init__(self, app, app_logger: AppLogger):
        super().__init__(app)
        self.app_logger = app_logger

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            return render_error(e, self.app_logger)


def error_handlers(app_logger: AppLogger) -> List[tuple]:
    """``(exception class, handler)`` pairs registered on the application."""

    async def handle_error(request: Request, exc: Exception) -> Response:
        return render_error(exc, app_logger)

    async def handle_validation_error(request: Request, exc: Exception) -> Response:
        return render_error(exc, app_logger, status=422)

    return [
        (StarletteHTTPException, handle_error),
        (RequestError, handle_error),
        (RequestValidationError, handle_validation_error),
    ]
