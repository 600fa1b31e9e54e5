from __future__ import annotations

import asyncio
import shutil
from typing import Any, Dict, Optional

from fastapi import APIRouter

from services import SessionService


def build_health_router(session_service: SessionService) -> APIRouter:
    router = APIRouter()

    @router.get("/healthz")
    async def healthcheck() -> Dict[str, Any]:
        git_task = asyncio.create_task(_git_version(session_service.settings.git_binary))

        mongo_ok = await session_service.repository.ping()
        git_version = await git_task

        issues = []
        if not mongo_ok:
            issues.append("Session store ping failed.")
        if git_version is None:
            issues.append(f"git binary '{session_service.settings.git_binary}' is unavailable.")

        return {
            "status": "healthy" if not issues else "degraded",
            "session_store": "ok" if mongo_ok else "unreachable",
            "repository_backend": type(session_service.repository).__name__,
            "git": git_version or "unavailable",
            "live_subscriptions": session_service.live_subscriptions(),
            "issues": issues,
        }

    return router


async def _git_version(git_binary: str) -> Optional[str]:
    if shutil.which(git_binary) is None:
        return None
    try:
        process = await asyncio.create_subprocess_exec(
            git_binary,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=2)
    except (OSError, asyncio.TimeoutError):
        return None
    if process.returncode != 0:
        return None
    return stdout.decode(errors="replace").strip()
