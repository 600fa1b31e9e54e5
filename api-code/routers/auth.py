from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Response, status

from schemas import LoginRequest, LoginResponse, LogoutResponse, MeResponse
from services import AuthService, Operator


def build_auth_router(auth_service: AuthService, auth_dependency: Callable[..., Any]) -> APIRouter:
    router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

    @router.post(
        "/login",
        response_model=LoginResponse,
        status_code=status.HTTP_200_OK,
        summary="Authenticate the operator and issue the session cookie.",
    )
    async def login(payload: LoginRequest, response: Response) -> LoginResponse:
        if not auth_service.verify_credentials(payload.username, payload.password):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
        token, expires_at = auth_service.create_access_token(payload.username)
        auth_service.set_auth_cookie(response, token, expires_at)
        return LoginResponse(username=payload.username, expires_at=expires_at)

    @router.post("/logout", response_model=LogoutResponse, summary="Clear the session cookie.")
    async def logout(response: Response) -> LogoutResponse:
        auth_service.clear_auth_cookie(response)
        return LogoutResponse(success=True)

    @router.get("/me", response_model=MeResponse, summary="Return the signed-in operator.")
    async def me(operator: Operator = Depends(auth_dependency)) -> MeResponse:
        return MeResponse(username=operator.username, expires_at=operator.expires_at)

    return router
