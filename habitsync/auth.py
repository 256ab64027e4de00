from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader
import os

# Authentication flows live outside this service; requests carry a shared
# API key and the id of the already authenticated user.
API_KEY = os.getenv("HABITSYNC_API_KEY", "your-secret-key-change-me")

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for authentication"""
    if not api_key or api_key != API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key"
        )
    return api_key


async def get_user_id(x_user_id: str = Header(None)) -> str:
    """Id of the authenticated user, supplied by the auth layer"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return x_user_id.strip()
