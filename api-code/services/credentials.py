from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from domain import AuthenticationFailure
from settings import Settings


logger = logging.getLogger("runtime-push.credentials")


class GitCredentials(BaseModel):
    model_config = {"frozen": True}

    username: str
    secret: str = Field(..., repr=False, description="Personal access token or password.")

    @property
    def valid(self) -> bool:
        return bool(self.username.strip() and self.secret.strip())


CredentialPrompt = Callable[[], Awaitable[GitCredentials]]


class SettingsCredentialStore:
    """Stored credentials resolved from GIT_USERNAME / GIT_TOKEN."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def load(self) -> Optional[GitCredentials]:
        username = (self.settings.git_username or "").strip()
        token = (self.settings.git_token or "").strip()
        if not username or not token:
            return None
        return GitCredentials(username=username, secret=token)


class OperatorCredentialPrompt:
    """Answers credential prompts with whatever the operator offered last.

    The host offers credentials out of band (an API call); a prompt without a
    pending offer fails with AuthenticationFailure so the push can be retried
    once the operator has supplied them.
    """

    def __init__(self) -> None:
        self._offered: Optional[GitCredentials] = None

    def offer(self, credentials: GitCredentials) -> None:
        self._offered = credentials

    @property
    def pending(self) -> bool:
        return self._offered is not None

    async def __call__(self) -> GitCredentials:
        offered, self._offered = self._offered, None
        if offered is None:
            raise AuthenticationFailure("Git credentials required. Supply a username and token.")
        return offered


class CredentialBroker:
    """Caches git credentials for a session and falls back to prompting."""

    def __init__(
        self,
        store: Optional[SettingsCredentialStore] = None,
        prompt: Optional[CredentialPrompt] = None,
    ) -> None:
        self.store = store
        self.prompt = prompt
        self._cached: Optional[GitCredentials] = None
        self._cached_from_store = False
        self._store_rejected = False

    @property
    def cached(self) -> Optional[GitCredentials]:
        return self._cached

    async def resolve(self) -> GitCredentials:
        if self._cached is not None:
            return self._cached

        if self.store is not None and not self._store_rejected:
            stored = self.store.load()
            if stored is not None and stored.valid:
                self._cached = stored
                self._cached_from_store = True
                return stored

        if self.prompt is None:
            raise AuthenticationFailure("Git credentials required.")
        try:
            prompted = await self.prompt()
        except AuthenticationFailure:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise AuthenticationFailure(str(exc)) from exc
        if not prompted.valid:
            raise AuthenticationFailure("Invalid Git credentials")
        self._cached = prompted
        self._cached_from_store = False
        return prompted

    def prefer_prompt(self) -> None:
        """The operator supplied credentials out of band; use them on the next resolve."""
        self._cached = None
        self._cached_from_store = False
        self._store_rejected = True

    def invalidate(self) -> None:
        if self._cached is None:
            return
        if self._cached_from_store:
            # Stored credentials were rejected; the next resolve must prompt.
            self._store_rejected = True
        logger.warning("Invalidating cached git credentials for %s", self._cached.username)
        self._cached = None
        self._cached_from_store = False
