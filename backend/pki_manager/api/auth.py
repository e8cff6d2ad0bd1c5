from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, HTTPException, status

from pki_manager.auth import verify_admin_password
from pki_manager.config import settings
from pki_manager.schemas.auth import LoginRequest, LoginResponse
from pki_manager.security import create_access_token

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Operator login",
    description="Authenticate the PKI operator account and return a JWT access token.",
)
async def login(request: LoginRequest):
    if not verify_admin_password(request.username, request.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(data={"sub": request.username}, expires_delta=expires_delta)

    return {
        "token": token,
        "expires_at": (datetime.now(timezone.utc) + expires_delta).isoformat(),
    }
