from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from domain import InvalidTransition
from domain.completion import can_finish
from models import DeploymentSession
from repositories import SessionRepository
from schemas import SessionContextRequest, SessionCreateRequest, SessionResponse, SessionSummary
from services.branch_lifecycle import BranchLifecycleManager, ChangePublisher
from services.commit_message import build_commit_message
from services.credentials import (
    CredentialBroker,
    GitCredentials,
    OperatorCredentialPrompt,
    SettingsCredentialStore,
)
from services.deployment_coordinator import DeploymentCoordinator
from services.git_publisher import GitChangePublisher
from services.job_directory import AmplifyJobDirectory
from services.job_discovery import JobDirectory, JobDiscoveryEngine, Sleep
from services.job_polling import JobPoller, PollingSlots
from settings import Settings


logger = logging.getLogger("runtime-push.sessions")

PublisherFactory = Callable[[DeploymentSession], ChangePublisher]
DirectoryFactory = Callable[[DeploymentSession], JobDirectory]


class SessionNotFoundError(LookupError):
    """Raised when a deployment session id is unknown."""


class _LiveSession:
    def __init__(self, coordinator: DeploymentCoordinator, prompt: OperatorCredentialPrompt) -> None:
        self.coordinator = coordinator
        self.prompt = prompt


class SessionService:
    """Owns one coordinator per live deployment session."""

    def __init__(
        self,
        repository: SessionRepository,
        settings: Settings,
        *,
        publisher_factory: Optional[PublisherFactory] = None,
        directory_factory: Optional[DirectoryFactory] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.publisher_factory = publisher_factory or self._default_publisher
        self.directory_factory = directory_factory or self._default_directory
        self._sleep = sleep
        self._clock = clock
        self._live: Dict[str, _LiveSession] = {}

    def _default_publisher(self, session: DeploymentSession) -> ChangePublisher:
        return GitChangePublisher(
            session.repo_path,
            git_binary=self.settings.git_binary,
            remote=self.settings.git_remote,
            author_name=self.settings.git_author_name,
            author_email=self.settings.git_author_email,
        )

    def _default_directory(self, session: DeploymentSession) -> JobDirectory:
        return AmplifyJobDirectory(session.app_id or "", session.region or "")

    def _build(self, session: DeploymentSession) -> _LiveSession:
        settings = self.settings
        publisher = self.publisher_factory(session)
        directory = self.directory_factory(session)
        discovery = JobDiscoveryEngine(
            directory,
            attempts=settings.discovery_attempts,
            delay_step_seconds=settings.discovery_delay_step_seconds,
            branch_settle_seconds=settings.branch_settle_seconds,
            branch_created_delay_seconds=settings.branch_created_delay_seconds,
            sleep=self._sleep,
        )
        poller = JobPoller(directory, interval_seconds=settings.poll_interval_seconds, sleep=self._sleep)
        lifecycle = BranchLifecycleManager(
            publisher,
            directory,
            prefix=settings.test_branch_prefix,
            clock=self._clock,
        )
        prompt = OperatorCredentialPrompt()
        coordinator = DeploymentCoordinator(
            session,
            publisher=publisher,
            directory=directory,
            discovery=discovery,
            slots=PollingSlots(poller),
            lifecycle=lifecycle,
            credentials=CredentialBroker(SettingsCredentialStore(settings), prompt),
            repository=self.repository,
            retry_settle_seconds=settings.retry_settle_seconds,
            sleep=self._sleep,
        )
        return _LiveSession(coordinator, prompt)

    def _resolve_identity(self, app_id: Optional[str], region: Optional[str]) -> tuple[str, str]:
        app_id = (app_id or self.settings.amplify_app_id or "").strip()
        region = (region or self.settings.aws_region or "").strip()
        if not app_id:
            raise ValueError("An Amplify app id is required (request or AMPLIFY_APP_ID).")
        if not region:
            raise ValueError("An AWS region is required (request or AWS_REGION).")
        return app_id, region

    async def create_session(
        self, payload: SessionCreateRequest, *, operator: Optional[str] = None
    ) -> DeploymentCoordinator:
        app_id, region = self._resolve_identity(payload.app_id, payload.region)
        session = DeploymentSession(
            _id=str(uuid4()),
            app_id=app_id,
            region=region,
            repo_path=payload.repo_path,
            target_branch=payload.target_branch.strip(),
            identity=(payload.identity or operator or "user").strip() or "user",
            commit_message=(payload.commit_message or "").strip() or None,
        )
        live = self._build(session)
        if session.commit_message is None:
            session.commit_message = build_commit_message(
                payload.target_runtime,
                payload.backend_type,
                await self._count_changes(live.coordinator.publisher),
            )
        await self.repository.create(session)
        self._live[session.session_id] = live
        logger.info(
            "Created session %s app=%s branch=%s", session.session_id, app_id, session.target_branch
        )
        return live.coordinator

    @staticmethod
    async def _count_changes(publisher: ChangePublisher) -> int:
        try:
            return len(await publisher.changed_files())
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Unable to count changed files: %s", exc)
            return 0

    async def _live_session(self, session_id: str) -> _LiveSession:
        live = self._live.get(session_id)
        if live is not None:
            return live
        session = await self.repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"deployment session not found: {session_id}")
        live = self._build(session)
        self._live[session_id] = live
        await live.coordinator.resume()
        logger.info("Restored session %s in phase %s", session_id, session.phase.value)
        return live

    async def get_coordinator(self, session_id: str) -> DeploymentCoordinator:
        return (await self._live_session(session_id)).coordinator

    async def sync_context(self, session_id: str, payload: SessionContextRequest) -> DeploymentCoordinator:
        """Reset the session when the app, branch or repository it was based on changed."""
        live = await self._live_session(session_id)
        session = live.coordinator.session
        app_id, region = self._resolve_identity(payload.app_id, payload.region)
        changed = (
            session.app_id != app_id
            or session.region != region
            or session.target_branch != payload.target_branch
            or session.repo_path != payload.repo_path
        )
        if not changed:
            return live.coordinator

        logger.info("Upstream context of session %s changed; resetting", session_id)
        live.coordinator.close()
        fresh = session.reset()
        fresh.app_id = app_id
        fresh.region = region
        fresh.target_branch = payload.target_branch
        fresh.repo_path = payload.repo_path
        rebuilt = self._build(fresh)
        self._live[session_id] = rebuilt
        await self.repository.save(fresh)
        return rebuilt.coordinator

    async def supply_credentials(self, session_id: str, username: str, secret: str) -> None:
        credentials = GitCredentials(username=username, secret=secret)
        if not credentials.valid:
            raise ValueError("Username and token are both required.")
        live = await self._live_session(session_id)
        live.prompt.offer(credentials)
        live.coordinator.credentials.prefer_prompt()

    async def finish(self, session_id: str) -> DeploymentSession:
        live = await self._live_session(session_id)
        coordinator = live.coordinator
        if not coordinator.can_finish():
            raise InvalidTransition(
                "The deployment cannot be finished yet.",
                current=coordinator.session.phase.value,
            )
        coordinator.close()
        self._live.pop(session_id, None)
        await self.repository.delete(session_id)
        logger.info("Session %s finished in phase %s", session_id, coordinator.session.phase.value)
        return coordinator.session

    async def run_in_background(
        self,
        session_id: str,
        action: str,
        operation: Callable[[DeploymentCoordinator], Awaitable[Any]],
    ) -> None:
        try:
            coordinator = await self.get_coordinator(session_id)
            await operation(coordinator)
        except InvalidTransition as exc:
            logger.warning("Session %s rejected %s: %s", session_id, action, exc)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Session %s %s failed error=%s", session_id, action, exc)

    async def list_sessions(self, limit: int = 20) -> list[SessionSummary]:
        """Most recently updated sessions; live ones report their in-memory state."""
        summaries: list[SessionSummary] = []
        for stored in await self.repository.list_active(limit):
            live = self._live.get(stored.session_id)
            session = live.coordinator.session if live is not None else stored
            summaries.append(
                SessionSummary(
                    session_id=session.session_id,
                    phase=session.phase,
                    scenario=session.scenario,
                    target_branch=session.target_branch,
                    working_branch=session.working_branch,
                    can_finish=can_finish(session),
                    updated_at=session.updated_at,
                )
            )
        return summaries

    def live_subscriptions(self) -> int:
        return sum(live.coordinator.slots.active_count() for live in self._live.values())

    def close(self) -> None:
        for live in self._live.values():
            live.coordinator.close()
        self._live.clear()

    def describe(self, coordinator: DeploymentCoordinator) -> SessionResponse:
        session = coordinator.session
        return SessionResponse(
            session_id=session.session_id,
            phase=session.phase,
            scenario=session.scenario,
            target_branch=session.target_branch,
            working_branch=session.working_branch,
            identity=session.identity,
            app_id=session.app_id,
            region=session.region,
            publish=session.publish,
            no_deployment_changes=session.no_deployment_changes,
            test_job=session.test_job,
            post_verification_choice=session.post_verification_choice,
            merge_result=session.merge_result,
            merge_loading=session.merge_loading,
            merge_job=session.merge_job,
            cleanup=session.cleanup,
            failure=session.failure,
            can_finish=coordinator.can_finish(),
            cleanup_offered=coordinator.cleanup_offered,
            tracked_job=coordinator.tracked_job,
            console_url=coordinator.console_url(),
            credentials_cached=coordinator.credentials.cached is not None,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )
