from __future__ import annotations

from typing import Dict, Optional

from models import DeploymentSession


class InMemorySessionRepository:
    """Fallback repository used when MongoDB is unavailable.

    Sessions are stored as their serialized documents so that reads return
    independent copies, the same as a database round trip.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, dict] = {}

    async def ensure_indexes(self) -> None:  # pragma: no cover - no-op
        return

    async def ping(self) -> bool:
        return True

    async def create(self, session: DeploymentSession) -> DeploymentSession:
        if session.session_id in self._documents:
            raise ValueError(f"deployment session already exists: {session.session_id}")
        self._documents[session.session_id] = session.to_mongo()
        return session

    async def get(self, session_id: str) -> Optional[DeploymentSession]:
        document = self._documents.get(session_id)
        if document is None:
            return None
        return DeploymentSession.from_mongo(document)

    async def save(self, session: DeploymentSession) -> DeploymentSession:
        self._documents[session.session_id] = session.to_mongo()
        return session

    async def delete(self, session_id: str) -> bool:
        return self._documents.pop(session_id, None) is not None

    async def list_active(self, limit: int = 20) -> list[DeploymentSession]:
        documents = sorted(
            self._documents.values(), key=lambda doc: doc.get("updated_at") or "", reverse=True
        )
        return [DeploymentSession.from_mongo(document) for document in documents[:limit]]
