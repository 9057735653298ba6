from __future__ import annotations

import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from .config import settings
from .logging_setup import request_id_var, user_id_var, wizard_session_var


async def request_context_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]):
    """Bind per-request log correlation.

    - request_id: X-Request-ID (if present) else uuid4, echoed on the response
    - user_id: X-User-Id (if present) else LOCAL_USER_ID
    - wizard session: starts unset; wizard routes bind it once the session resolves
    """

    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    uid = (request.headers.get("X-User-Id") or "").strip() or settings.local_user_id

    tokens = (
        (request_id_var, request_id_var.set(rid)),
        (user_id_var, user_id_var.set(uid)),
        (wizard_session_var, wizard_session_var.set(None)),
    )
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
