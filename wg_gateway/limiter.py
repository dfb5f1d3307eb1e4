from slowapi import Limiter
from starlette.requests import Request


def client_ip(request: Request) -> str:
    """Real client IP, honouring the reverse proxy's X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=client_ip)
