from .in_memory import InMemorySessionRepository
from .sessions import SessionRepository

__all__ = ["InMemorySessionRepository", "SessionRepository"]
