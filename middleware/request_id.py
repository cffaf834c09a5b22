# middleware/request_id.py
"""
Request correlation for the Dokus API.

Every request gets an id: the caller's X-Request-ID when it is a sane token,
a fresh UUID otherwise. The id is kept in a ContextVar (read by the structlog
processors in utils.logging_config), in request.state and in the response
header, so API logs, worker logs and client reports can be matched.
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from utils.logging_config import get_logger

REQUEST_ID_HEADER = "X-Request-ID"

# Ids from clients end up in log lines; anything else is replaced
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

logger = get_logger(__name__)


def get_request_id() -> Optional[str]:
    """Request ID of the current request, None outside a request."""
    return _request_id_ctx.get()


def resolve_request_id(header_value: Optional[str]) -> str:
    if header_value and _VALID_REQUEST_ID.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        token = _request_id_ctx.set(request_id)

        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception("request_failed", method=request.method, path=request.url.path)
            raise
        finally:
            _request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
