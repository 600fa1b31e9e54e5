from __future__ import annotations

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument

from db.mongo import get_database
from models import DeploymentSession


class SessionRepository:
    """MongoDB repository for the deployment_sessions collection."""

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._db = database if database is not None else get_database()
        self._sessions: AsyncIOMotorCollection = self._db["deployment_sessions"]

    async def ensure_indexes(self) -> None:
        await self._db.command("ping")
        await self._sessions.create_index("phase")
        await self._sessions.create_index("updated_at")

    async def ping(self) -> bool:
        try:
            await self._db.command("ping")
        except Exception:  # pylint: disable=broad-except
            return False
        return True

    async def create(self, session: DeploymentSession) -> DeploymentSession:
        document = session.to_mongo()
        await self._sessions.insert_one(document)
        return DeploymentSession.from_mongo(document)

    async def get(self, session_id: str) -> Optional[DeploymentSession]:
        document = await self._sessions.find_one({"_id": session_id})
        if not document:
            return None
        return DeploymentSession.from_mongo(document)

    async def save(self, session: DeploymentSession) -> DeploymentSession:
        document = session.to_mongo()
        stored = await self._sessions.find_one_and_replace(
            {"_id": session.session_id},
            document,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return DeploymentSession.from_mongo(stored or document)

    async def delete(self, session_id: str) -> bool:
        result = await self._sessions.delete_one({"_id": session_id})
        return result.deleted_count > 0

    async def list_active(self, limit: int = 20) -> list[DeploymentSession]:
        cursor = self._sessions.find().sort("updated_at", -1).limit(limit)
        return [DeploymentSession.from_mongo(document) async for document in cursor]
