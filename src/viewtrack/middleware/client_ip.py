"""Client address resolution behind reverse proxies."""

from starlette.requests import Request


def get_client_ip(request: Request, trust_forwarded_for: bool = True) -> str | None:
    """Left-most X-Forwarded-For entry when trusted, else the socket peer."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:45]
    return request.client.host if request.client else None
