from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime configuration resolved from environment variables."""

    mongodb_uri: str = Field(
        default="mongodb://127.0.0.1:27017",
        alias="MONGODB_URI",
        description="MongoDB connection string",
    )
    mongodb_db_name: str = Field(
        default="runtime_push",
        alias="MONGODB_DB_NAME",
        description="MongoDB database name",
    )
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Root logging level for the service.",
    )
    aws_region: Optional[str] = Field(
        default=None,
        alias="AWS_REGION",
        description="Default region of the Amplify app when a session does not name one.",
    )
    amplify_app_id: Optional[str] = Field(
        default=None,
        alias="AMPLIFY_APP_ID",
        description="Default Amplify app id when a session does not name one.",
    )
    git_binary: str = Field(
        default="git",
        alias="GIT_BINARY",
        description="git executable used for publishing changes.",
    )
    git_remote: str = Field(
        default="origin",
        alias="GIT_REMOTE",
        description="Remote that receives pushed branches.",
    )
    git_username: Optional[str] = Field(
        default=None,
        alias="GIT_USERNAME",
        description="Stored git username used before prompting the operator.",
    )
    git_token: Optional[str] = Field(
        default=None,
        alias="GIT_TOKEN",
        description="Stored personal access token paired with GIT_USERNAME.",
    )
    git_author_name: str = Field(
        default="Runtime Push",
        alias="GIT_AUTHOR_NAME",
        description="Author name recorded on published commits.",
    )
    git_author_email: str = Field(
        default="runtime-push@localhost",
        alias="GIT_AUTHOR_EMAIL",
        description="Author email recorded on published commits.",
    )
    test_branch_prefix: str = Field(
        default="test",
        alias="TEST_BRANCH_PREFIX",
        description="Prefix of generated test branch names ({prefix}-{identity}-{timestamp}).",
    )
    discovery_attempts: int = Field(
        default=3,
        alias="DISCOVERY_ATTEMPTS",
        description="Number of job listing attempts before discovery gives up.",
    )
    discovery_delay_step_seconds: float = Field(
        default=5.0,
        alias="DISCOVERY_DELAY_STEP_SECONDS",
        description="Attempt n waits n times this delay before listing jobs.",
    )
    branch_settle_seconds: float = Field(
        default=5.0,
        alias="BRANCH_SETTLE_SECONDS",
        description="Wait before checking whether a freshly pushed test branch is registered.",
    )
    branch_created_delay_seconds: float = Field(
        default=3.0,
        alias="BRANCH_CREATED_DELAY_SECONDS",
        description="Wait after registering a test branch with the CI system.",
    )
    retry_settle_seconds: float = Field(
        default=3.0,
        alias="RETRY_SETTLE_SECONDS",
        description="Wait after starting a retry job before discovering it.",
    )
    poll_interval_seconds: float = Field(
        default=10.0,
        alias="POLL_INTERVAL_SECONDS",
        description="Fixed period between job status refreshes.",
    )
    login_user: str = Field(
        default="operator",
        alias="LOGIN_USER",
        description="Operator username accepted by the login endpoint.",
    )
    login_password: str = Field(
        default="",
        alias="LOGIN_PASSWORD",
        description="Operator password accepted by the login endpoint.",
    )
    jwt_secret_key: str = Field(
        default="change-me",
        alias="JWT_SECRET_KEY",
        description="Secret used to sign operator session cookies.",
    )
    jwt_expire_minutes: int = Field(
        default=60,
        alias="JWT_EXPIRE_MINUTES",
        description="Lifetime of an operator session cookie.",
    )
    auth_cookie_name: str = Field(
        default="runtime_push_auth",
        alias="AUTH_COOKIE_NAME",
        description="Name of the operator session cookie.",
    )
    auth_cookie_secure: bool = Field(
        default=False,
        alias="AUTH_COOKIE_SECURE",
        description="Mark the operator cookie as Secure (HTTPS only).",
    )
    auth_cookie_domain: Optional[str] = Field(
        default=None,
        alias="AUTH_COOKIE_DOMAIN",
        description="Optional cookie domain override.",
    )

    model_config = {"populate_by_name": True}

    @classmethod
    def from_env(cls) -> "Settings":
        return cls.model_validate(os.environ)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance built from environment variables."""
    return Settings.from_env()
