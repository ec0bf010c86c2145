from fastapi import Request


def extract_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit_scope(path: str) -> str:
    """Bucket an API path: message deletion and game bot calls get the tighter limit."""
    lowered = path.lower()
    if "/messages/" in lowered or "/lowcard/" in lowered:
        return "sensitive"
    return "global"
