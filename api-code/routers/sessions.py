from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from domain import InvalidTransition
from models import CleanupState
from schemas import (
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
from services import DeploymentCoordinator, Operator, SessionNotFoundError, SessionService


def build_sessions_router(session_service: SessionService, auth_dependency: Callable) -> APIRouter:
    router = APIRouter(
        prefix="/api/v1/sessions",
        tags=["sessions"],
        dependencies=[Depends(auth_dependency)],
    )

    async def load(session_id: str) -> DeploymentCoordinator:
        try:
            return await session_service.get_coordinator(session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    def conflict(exc: InvalidTransition) -> HTTPException:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)

    @router.post(
        "",
        response_model=SessionResponse,
        status_code=status.HTTP_201_CREATED,
        summary="Open a deployment session for a prepared working copy.",
    )
    async def create_session(
        payload: SessionCreateRequest, operator: Operator = Depends(auth_dependency)
    ) -> SessionResponse:
        try:
            coordinator = await session_service.create_session(payload, operator=operator.username)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return session_service.describe(coordinator)

    @router.get("", response_model=list[SessionSummary], summary="Recently updated deployment sessions.")
    async def list_sessions(limit: int = Query(default=20, ge=1, le=100)) -> list[SessionSummary]:
        return await session_service.list_sessions(limit)

    @router.get("/{session_id}", response_model=SessionResponse, summary="Current session state.")
    async def get_session(session_id: str) -> SessionResponse:
        return session_service.describe(await load(session_id))

    @router.post(
        "/{session_id}/context",
        response_model=SessionResponse,
        summary="Sync the upstream app, branch and repository; resets the session when they changed.",
    )
    async def sync_context(session_id: str, payload: SessionContextRequest) -> SessionResponse:
        await load(session_id)
        try:
            coordinator = await session_service.sync_context(session_id, payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return session_service.describe(coordinator)

    @router.post("/{session_id}/scenario", response_model=SessionResponse, summary="Select the deployment scenario.")
    async def select_scenario(session_id: str, payload: ScenarioRequest) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            await coordinator.select_scenario(payload.scenario)
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/credentials",
        status_code=status.HTTP_204_NO_CONTENT,
        summary="Supply git credentials for the next publish.",
    )
    async def supply_credentials(session_id: str, payload: CredentialsRequest) -> None:
        await load(session_id)
        try:
            await session_service.supply_credentials(session_id, payload.username, payload.secret)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @router.post(
        "/{session_id}/push",
        response_model=SessionResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Commit and push the working copy, then track the resulting job.",
    )
    async def push(session_id: str, background_tasks: BackgroundTasks) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            coordinator.validate_push()
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        background_tasks.add_task(
            session_service.run_in_background, session_id, "push", lambda c: c.push()
        )
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/status-check",
        response_model=SessionResponse,
        summary="Check the newest job on the tracked branch.",
    )
    async def check_status(session_id: str) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            await coordinator.check_job_status()
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/jobs/{job_id}/retry",
        response_model=SessionResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Start a retry of a finished job and track it.",
    )
    async def retry_job(session_id: str, job_id: str, background_tasks: BackgroundTasks) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            coordinator.validate_retry(job_id)
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        background_tasks.add_task(
            session_service.run_in_background,
            session_id,
            f"retry of job {job_id}",
            lambda c: c.retry_job(job_id),
        )
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/post-verification",
        response_model=SessionResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Merge the verified test branch into the target, or accept a manual merge.",
    )
    async def post_verification(
        session_id: str, payload: PostVerificationRequest, background_tasks: BackgroundTasks
    ) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            coordinator.validate_post_verification()
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        background_tasks.add_task(
            session_service.run_in_background,
            session_id,
            "post verification",
            lambda c: c.choose_post_verification(payload.choice),
        )
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/merge/retry",
        response_model=SessionResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Retry a failed merge into the target branch.",
    )
    async def retry_merge(session_id: str, background_tasks: BackgroundTasks) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            coordinator.validate_merge_retry()
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        background_tasks.add_task(
            session_service.run_in_background, session_id, "merge retry", lambda c: c.retry_merge()
        )
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/cleanup/request",
        response_model=CleanupState,
        summary="Offer deletion of the test branch.",
    )
    async def request_cleanup(session_id: str) -> CleanupState:
        coordinator = await load(session_id)
        try:
            return await coordinator.request_cleanup()
        except InvalidTransition as exc:
            raise conflict(exc) from exc

    @router.post(
        "/{session_id}/cleanup/confirm",
        response_model=SessionResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Delete the test branch everywhere, or keep it.",
    )
    async def confirm_cleanup(
        session_id: str, payload: CleanupConfirmRequest, background_tasks: BackgroundTasks
    ) -> SessionResponse:
        coordinator = await load(session_id)
        try:
            coordinator.validate_cleanup(payload.delete)
            if not payload.delete:
                await coordinator.confirm_cleanup(False)
                return session_service.describe(coordinator)
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        background_tasks.add_task(
            session_service.run_in_background,
            session_id,
            "cleanup",
            lambda c: c.confirm_cleanup(True),
        )
        return session_service.describe(coordinator)

    @router.post(
        "/{session_id}/finish",
        response_model=FinishResponse,
        summary="Finish the deployment and discard the session.",
    )
    async def finish(session_id: str) -> FinishResponse:
        await load(session_id)
        try:
            session = await session_service.finish(session_id)
        except InvalidTransition as exc:
            raise conflict(exc) from exc
        return FinishResponse(session_id=session.session_id, phase=session.phase)

    return router
