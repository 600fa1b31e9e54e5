from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from domain import JobStatus, JobTrigger
from models import JobSnapshot, JobSummary


logger = logging.getLogger("runtime-push.amplify")

_NOT_FOUND_CODES = {"NotFoundException", "ResourceNotFoundException"}


class JobDirectoryError(RuntimeError):
    """Raised when the Amplify API rejects or fails a request."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.code in _NOT_FOUND_CODES


class AmplifyJobDirectory:
    """Job directory backed by the AWS Amplify console API.

    boto3 is synchronous, so every call is pushed to a worker thread.
    """

    def __init__(self, app_id: str, region: str, *, client: Any = None) -> None:
        if not app_id:
            raise ValueError("Amplify app id is required.")
        if not region:
            raise ValueError("AWS region is required.")
        self.app_id = app_id
        self.region = region
        self._client_instance = client

    def _client(self) -> Any:
        if self._client_instance is None:
            self._client_instance = boto3.client("amplify", region_name=self.region)
        return self._client_instance

    async def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._invoke, operation, kwargs)

    def _invoke(self, operation: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        params = {key: value for key, value in kwargs.items() if value is not None}
        method = getattr(self._client(), operation)
        try:
            return method(appId=self.app_id, **params)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code")
            message = error.get("Message") or str(exc)
            raise JobDirectoryError(f"Amplify {operation} failed ({code}): {message}", code=code) from exc
        except BotoCoreError as exc:
            raise JobDirectoryError(f"Amplify {operation} failed: {exc}") from exc

    async def list_jobs(self, branch: str, commit_id: Optional[str] = None) -> List[JobSummary]:
        """Return the branch's jobs, newest first, optionally filtered by commit."""
        jobs: List[JobSummary] = []
        next_token: Optional[str] = None
        while True:
            response = await self._call(
                "list_jobs",
                branchName=branch,
                nextToken=next_token,
                maxResults=50,
            )
            for summary in response.get("jobSummaries") or []:
                if commit_id and summary.get("commitId") != commit_id:
                    continue
                jobs.append(
                    JobSummary(
                        job_id=str(summary.get("jobId") or ""),
                        commit_id=summary.get("commitId") or "",
                        status=JobStatus.from_wire(summary.get("status")),
                        commit_message=summary.get("commitMessage") or "",
                    )
                )
            next_token = response.get("nextToken")
            if not next_token:
                break
        return jobs

    async def get_job(self, branch: str, job_id: str) -> JobSnapshot:
        response = await self._call("get_job", branchName=branch, jobId=job_id)
        job = response.get("job")
        if not job:
            raise JobDirectoryError(f"Job {job_id} not found", code="NotFoundException")
        return _snapshot_from_summary(job.get("summary") or {})

    async def start_job(
        self,
        branch: str,
        trigger: JobTrigger,
        base_job_id: Optional[str] = None,
        *,
        commit_id: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> JobSnapshot:
        if trigger == JobTrigger.RETRY and not base_job_id:
            raise ValueError("RETRY jobs require the id of the job being retried.")
        response = await self._call(
            "start_job",
            branchName=branch,
            jobType=trigger.value,
            jobId=base_job_id,
            commitId=commit_id,
            commitMessage=commit_message,
        )
        summary = response.get("jobSummary")
        if not summary:
            raise JobDirectoryError("Failed to start job - no job summary returned")
        logger.info(
            "Started %s job %s on branch=%s", trigger.value, summary.get("jobId"), branch
        )
        return _snapshot_from_summary(summary)

    async def list_branches(self) -> List[str]:
        names: List[str] = []
        next_token: Optional[str] = None
        while True:
            response = await self._call("list_branches", nextToken=next_token, maxResults=50)
            for branch in response.get("branches") or []:
                name = branch.get("branchName")
                if name:
                    names.append(name)
            next_token = response.get("nextToken")
            if not next_token:
                break
        return names

    async def branch_exists(self, branch: str) -> bool:
        return branch in await self.list_branches()

    async def create_branch_registration(self, branch: str, description: Optional[str] = None) -> None:
        await self._call(
            "create_branch",
            branchName=branch,
            description=description,
            enableAutoBuild=True,
        )
        logger.info("Registered branch %s with Amplify app %s", branch, self.app_id)

    async def delete_branch_registration(self, branch: str) -> bool:
        """Remove the branch from the app. Returns False when it was already gone."""
        try:
            await self._call("delete_branch", branchName=branch)
        except JobDirectoryError as exc:
            if exc.not_found:
                logger.info("Amplify branch %s already absent", branch)
                return False
            raise
        return True

    def console_url(self, branch: str) -> str:
        return (
            f"https://{self.region}.console.aws.amazon.com/amplify/apps/"
            f"{self.app_id}/branches/{branch}/deployments"
        )


def _snapshot_from_summary(summary: Dict[str, Any]) -> JobSnapshot:
    return JobSnapshot(
        job_id=str(summary.get("jobId") or ""),
        commit_id=summary.get("commitId") or "",
        status=JobStatus.from_wire(summary.get("status")),
        commit_message=summary.get("commitMessage") or "",
        start_time=_as_datetime(summary.get("startTime")),
        end_time=_as_datetime(summary.get("endTime")),
    )


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None
