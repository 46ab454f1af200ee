from datetime import datetime, timedelta
from typing import Optional
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import JWT_SECRET_KEY, JWT_ALGORITHM
from exam_core.errors import Unauthorized

# Tokens are issued by the external identity provider; we only verify them.
SECRET_KEY = JWT_SECRET_KEY
ALGORITHM = JWT_ALGORITHM

ACCESS_TOKEN_EXPIRE_MINUTES = 30

# HTTP Bearer for token extraction; missing headers become Unauthorized, not 403
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create an access token in the identity provider's format.
    Used by local tooling and tests.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate JWT access token"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Access token has expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Could not validate credentials")

    # Verify token type
    if payload.get("type") != "access":
        raise Unauthorized("Invalid token type")

    return payload


async def get_current_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Extract and validate the admin principal from the bearer token"""
    if credentials is None:
        raise Unauthorized("Authentication required")

    payload = decode_access_token(credentials.credentials)

    user_id = payload.get("user_id") or payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid authentication credentials")

    principal = {"user_id": user_id, "email": payload.get("email")}
    request.state.principal = principal
    return principal
