# middleware/__init__.py
"""
HTTP middlewares for the Dokus API.
"""

from middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, get_request_id

__all__ = [
    "RequestIDMiddleware",
    "get_request_id",
    "REQUEST_ID_HEADER",
]
