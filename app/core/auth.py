from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer
from app.core.config import settings

security = HTTPBearer()

def create_access_token(owner_id: str, expires_delta: timedelta = timedelta(minutes=30)) -> str:
    """Create JWT access token (tokens are issued elsewhere; used by tests and tooling)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": owner_id,
        "exp": int((now + expires_delta).timestamp()),
        "iat": int(now.timestamp())
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_owner_id(token: str) -> str:
    """Return the owner id carried in a token's `sub` claim."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    owner_id = payload.get("sub")
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
    return owner_id

async def get_current_owner_id(credentials = Depends(security)) -> str:
    """Get the owner id of the current request from its bearer token."""
    return decode_owner_id(credentials.credentials)
