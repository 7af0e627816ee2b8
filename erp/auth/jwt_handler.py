from typing import Any, Dict, List, Optional
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from erp.core.config import settings

def create_access_token(
    user_id: int,
    permissions: Optional[List[Dict[str, Any]]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue an access token for a trusted caller"""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user_id),
        "type": "access",
        "permissions": permissions or [],
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate access token"""
    try:
        # Expiration is checked by jose
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    # Check token type
    if payload.get("type") != "access":
        return None

    return payload
