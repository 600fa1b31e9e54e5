from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Operator login name.")
    password: str = Field(..., repr=False, description="Operator password.")


class LoginResponse(BaseModel):
    username: str = Field(..., description="Operator the session cookie was issued to.")
    expires_at: datetime = Field(..., description="When the session cookie stops being accepted.")


class LogoutResponse(BaseModel):
    success: bool = Field(..., description="True once the session cookie is cleared.")


class MeResponse(BaseModel):
    username: str = Field(..., description="Operator decoded from the session cookie.")
    expires_at: datetime = Field(..., description="When the operator has to sign in again.")
