from __future__ import annotations

import asyncio
import base64
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel

from domain import AuthenticationFailure, NoRepositoryState, is_authentication_error
from services.credentials import GitCredentials


logger = logging.getLogger("runtime-push.git")

_MISSING_REF_MARKERS = (
    "remote ref does not exist",
    "not found",
    "unable to delete",
)


class CommandExecutionError(RuntimeError):
    """Raised when a git subprocess exits with a non-zero status."""

    def __init__(
        self,
        command: list[str],
        cwd: Optional[Path],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = stderr or stdout or f"return code {returncode}"
        super().__init__(f"command failed ({' '.join(command)}): {message}")


class CommitOutcome(BaseModel):
    commit_id: Optional[str] = None
    changed: bool = False

    @property
    def no_changes(self) -> bool:
        return not self.changed


class GitChangePublisher:
    """Publishes a working copy through the git CLI.

    Credentials are handed to git through ``GIT_CONFIG_*`` environment
    variables so that tokens never appear in command lines or error text.
    """

    def __init__(
        self,
        repo_path: Optional[Path | str],
        *,
        git_binary: str = "git",
        remote: str = "origin",
        author_name: str = "Runtime Push",
        author_email: str = "runtime-push@localhost",
    ) -> None:
        self.repo_path = Path(repo_path) if repo_path else None
        self.git_binary = git_binary
        self.remote = remote
        self.author_name = author_name
        self.author_email = author_email

    def _require_repository(self) -> Path:
        if self.repo_path is None:
            raise NoRepositoryState("No repository path found")
        if not (self.repo_path / ".git").exists():
            raise NoRepositoryState(f"Not a git working copy: {self.repo_path}")
        return self.repo_path

    async def changed_files(self) -> list[str]:
        result = await self._run_git(
            ["status", "--porcelain"],
            description="List changed files",
        )
        files: list[str] = []
        for line in result["stdout"].splitlines():
            if len(line) > 3:
                files.append(line[3:].strip())
        return files

    async def current_commit(self) -> str:
        result = await self._run_git(["rev-parse", "HEAD"], description="Resolve current commit SHA")
        stdout = result["stdout"].strip()
        if not stdout:
            raise RuntimeError("Unable to resolve current commit SHA")
        return stdout

    async def current_branch(self) -> str:
        result = await self._run_git(
            ["rev-parse", "--abbrev-ref", "HEAD"],
            description="Resolve checked out branch",
        )
        return result["stdout"].strip()

    async def stage_and_commit(self, message: str) -> CommitOutcome:
        changed = await self.changed_files()
        if not changed:
            logger.info("No working tree changes to commit in %s", self.repo_path)
            return CommitOutcome(commit_id=None, changed=False)

        await self._run_git(["add", "--all"], description="Stage all changes")
        await self._run_git(
            [
                "-c",
                f"user.name={self.author_name}",
                "-c",
                f"user.email={self.author_email}",
                "commit",
                "--message",
                message,
            ],
            description="Commit staged changes",
        )
        commit_id = await self.current_commit()
        logger.info("Committed %d file(s) as %s", len(changed), commit_id)
        return CommitOutcome(commit_id=commit_id, changed=True)

    async def push(self, branch: str, credentials: Optional[GitCredentials]) -> None:
        await self._run_git(
            ["push", self.remote, f"HEAD:refs/heads/{branch}"],
            description=f"Push HEAD to {self.remote}/{branch}",
            credentials=credentials,
        )
        logger.info("Pushed HEAD to %s/%s", self.remote, branch)

    async def create_branch(self, name: str) -> None:
        await self._run_git(["branch", name], description=f"Create branch {name}")

    async def checkout(self, branch: str) -> None:
        await self._run_git(["checkout", branch], description=f"Checkout {branch}")

    async def merge(self, source_branch: str) -> None:
        """Merge ``source_branch`` into HEAD; a failed merge is aborted before raising."""
        try:
            await self._run_git(
                [
                    "-c",
                    f"user.name={self.author_name}",
                    "-c",
                    f"user.email={self.author_email}",
                    "merge",
                    "--no-edit",
                    source_branch,
                ],
                description=f"Merge {source_branch}",
            )
        except CommandExecutionError:
            await self._abort_merge()
            raise

    async def _abort_merge(self) -> None:
        try:
            await self._run_git(["merge", "--abort"], description="Abort merge")
        except CommandExecutionError as exc:
            logger.warning("Unable to abort merge in %s: %s", self.repo_path, exc.stderr or exc)
        else:
            logger.info("Aborted conflicting merge in %s", self.repo_path)

    async def remote_commit(self, branch: str) -> Optional[str]:
        """Last known remote head of ``branch``; None when it was never fetched or pushed."""
        try:
            result = await self._run_git(
                ["rev-parse", "--verify", "--quiet", f"refs/remotes/{self.remote}/{branch}"],
                description=f"Resolve {self.remote}/{branch}",
            )
        except CommandExecutionError:
            return None
        return result["stdout"].strip() or None

    async def delete_remote_branch(self, branch: str, credentials: Optional[GitCredentials]) -> bool:
        """Delete ``branch`` on the remote. Returns False when it was already gone."""
        try:
            await self._run_git(
                ["push", self.remote, "--delete", branch],
                description=f"Delete {self.remote}/{branch}",
                credentials=credentials,
            )
        except CommandExecutionError as exc:
            if _is_missing_ref(exc):
                logger.info("Remote branch %s already absent", branch)
                return False
            raise
        return True

    async def delete_local_branch(self, branch: str) -> bool:
        """Delete the local ``branch``. Returns False when it was already gone."""
        try:
            await self._run_git(["branch", "-D", branch], description=f"Delete local branch {branch}")
        except CommandExecutionError as exc:
            if _is_missing_ref(exc):
                logger.info("Local branch %s already absent", branch)
                return False
            raise
        return True

    async def delete_branch_everywhere(
        self, branch: str, credentials: Optional[GitCredentials]
    ) -> Dict[str, bool]:
        remote_deleted = await self.delete_remote_branch(branch, credentials)
        local_deleted = await self.delete_local_branch(branch)
        return {"remote": remote_deleted, "local": local_deleted}

    async def _run_git(
        self,
        args: list[str],
        *,
        description: str,
        credentials: Optional[GitCredentials] = None,
    ) -> Dict[str, Any]:
        cwd = self._require_repository()
        command = [self.git_binary, *args]
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        if credentials is not None:
            if not credentials.valid:
                raise AuthenticationFailure("Invalid Git credentials")
            token = base64.b64encode(
                f"{credentials.username}:{credentials.secret}".encode()
            ).decode()
            env["GIT_CONFIG_COUNT"] = "1"
            env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
            env["GIT_CONFIG_VALUE_0"] = f"Authorization: Basic {token}"

        logger.debug("%s: %s", description, " ".join(command))
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await process.communicate()

        metadata: Dict[str, Any] = {
            "description": description,
            "command": " ".join(command),
            "cwd": str(cwd),
            # Porcelain output is column based; only the trailing newline goes.
            "stdout": stdout_bytes.decode(errors="replace").rstrip("\n"),
            "stderr": stderr_bytes.decode(errors="replace").strip(),
            "returncode": process.returncode,
        }

        if process.returncode != 0:
            error = CommandExecutionError(
                command=command,
                cwd=cwd,
                returncode=process.returncode,
                stdout=metadata["stdout"],
                stderr=metadata["stderr"],
            )
            if credentials is not None and is_authentication_error(error):
                raise AuthenticationFailure(
                    "Authentication failed. Please check your credentials."
                ) from error
            raise error
        return metadata


def _is_missing_ref(exc: CommandExecutionError) -> bool:
    text = f"{exc.stderr}\n{exc.stdout}".lower()
    return any(marker in text for marker in _MISSING_REF_MARKERS)
