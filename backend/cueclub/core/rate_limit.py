"""Shared rate limiter instance for use across route files.

Front-desk terminals usually sit behind one venue IP, so authenticated
requests are keyed by staff id and only anonymous ones by address.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from cueclub.core.config import settings
from cueclub.core.security import decode_access_token


def staff_or_ip(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        payload = decode_access_token(auth.split(" ", 1)[1])
        if payload and payload.get("sub"):
            return f"staff:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=staff_or_ip, enabled=settings.rate_limit_enabled)
