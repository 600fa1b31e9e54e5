from .auth import LoginRequest, LoginResponse, LogoutResponse, MeResponse
from .session import (
    CleanupConfirmRequest,
    CredentialsRequest,
    FinishResponse,
    PostVerificationRequest,
    ScenarioRequest,
    SessionContextRequest,
    SessionCreateRequest,
    SessionResponse,
    SessionSummary,
)

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "LogoutResponse",
    "MeResponse",
    "CleanupConfirmRequest",
    "CredentialsRequest",
    "FinishResponse",
    "PostVerificationRequest",
    "ScenarioRequest",
    "SessionContextRequest",
    "SessionCreateRequest",
    "SessionResponse",
    "SessionSummary",
]
