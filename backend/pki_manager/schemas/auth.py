from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    token: str = Field(..., description="Bearer JWT for /api routes")
    expires_at: str = Field(..., description="ISO 8601 expiry timestamp (UTC)")
