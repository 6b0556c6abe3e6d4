"""Request correlation middleware.

Admission decisions are logged per request (``rate_limit.allowed``,
``rate_limit.exceeded``, ``rate_limit.store_unavailable``). The middleware
gives each of those log lines, and the response the caller sees, the same
correlation id: the caller's own id from the configured header when sent,
otherwise a fresh UUID. Context set during the request (id and client hash)
is cleared once the response is produced, including on 429s.
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from admission_gate.core.config import settings
from admission_gate.core.logging import clear_request_context, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Tag the request and its response with a correlation id.

    Also reports the handling time in ``X-Request-Duration-ms``.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_context()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms", f"{(time.perf_counter() - started) * 1000:.2f}"
    )
    return response
