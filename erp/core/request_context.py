import uuid
from typing import Optional, Dict
from fastapi import Request

HDR_REQUEST_ID = "X-Request-Id"

def get_request_context(request: Request) -> Dict[str, Optional[str]]:
    """
    Endpoint, client IP, user-agent and request id of an incoming request.
    A request id is generated when the caller did not send one.
    """
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "endpoint": f"{request.method} {request.url.path}",
        "request_id": request.headers.get(HDR_REQUEST_ID) or uuid.uuid4().hex,
    }
