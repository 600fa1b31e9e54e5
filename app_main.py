from __future__ import annotations

import logging
import sys
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


PROJECT_ROOT = Path(__file__).resolve().parent
API_CODE_PATH = PROJECT_ROOT / "api-code"
if str(API_CODE_PATH) not in sys.path:
    sys.path.insert(0, str(API_CODE_PATH))

from db.mongo import close_mongo_client  # noqa: E402
from env_loader import load_local_env  # noqa: E402
from repositories import InMemorySessionRepository, SessionRepository  # noqa: E402
from routers import build_auth_router, build_health_router, build_sessions_router  # noqa: E402
from services import AuthService, SessionService  # noqa: E402
from settings import get_settings  # noqa: E402


load_local_env()
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("runtime-push")

app = FastAPI(
    title="Runtime Push API",
    version="0.1.0",
    description="Publishes prepared runtime upgrades and tracks their Amplify deployments.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

session_repository: SessionRepository | InMemorySessionRepository = SessionRepository()
session_service = SessionService(session_repository, settings)
auth_service = AuthService(settings)
auth_dependency = auth_service.build_auth_dependency()

app.include_router(build_auth_router(auth_service, auth_dependency))
app.include_router(build_sessions_router(session_service, auth_dependency))
app.include_router(build_health_router(session_service))


@app.on_event("startup")
async def on_startup() -> None:
    global session_repository  # pylint: disable=global-statement
    try:
        await session_repository.ensure_indexes()
        logger.info("MongoDB session repository initialized successfully.")
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning(
            "MongoDB unavailable (%s); falling back to in-memory session repository.", exc
        )
        session_repository = InMemorySessionRepository()
        session_service.repository = session_repository  # type: ignore[assignment]


@app.on_event("shutdown")
async def on_shutdown() -> None:
    session_service.close()
    close_mongo_client()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app_main:app", host="0.0.0.0", port=9001, reload=True)
