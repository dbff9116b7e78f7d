"""Request id propagation.

An incoming ``X-Request-ID`` is reused when it looks sane; otherwise a new
one is generated. The id is echoed on the response and attached to every log
record emitted while the request is handled.
"""

import re
import uuid
from contextvars import ContextVar

from fastapi import Request

REQUEST_ID_HEADER = "X-Request-ID"

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def get_request_id() -> str | None:
    """Return the id of the request being handled, if any."""
    return _request_id.get()


async def request_id_middleware(request: Request, call_next):
    incoming = request.headers.get(REQUEST_ID_HEADER)
    request_id = incoming if incoming and _VALID_REQUEST_ID.match(incoming) else uuid.uuid4().hex

    token = _request_id.set(request_id)
    try:
        response = await call_next(request)
    finally:
        _request_id.reset(token)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response
