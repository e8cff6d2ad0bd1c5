from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pki_manager.config import settings
from pki_manager.security import decode_access_token, is_bcrypt_hash, verify_password

security = HTTPBearer()


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Resolve the operator from the bearer JWT"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception

    return {"username": payload["sub"]}


def verify_admin_password(username: str, password: str) -> bool:
    """Check operator credentials against ADMIN / ADMIN_PASSWORD"""
    if username != settings.ADMIN:
        return False

    if is_bcrypt_hash(settings.ADMIN_PASSWORD):
        return verify_password(password, settings.ADMIN_PASSWORD)
    return password == settings.ADMIN_PASSWORD
