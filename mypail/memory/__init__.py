"""Persistence layer: durable persona records behind the in-memory registry."""
from mypail.memory.session_store import PersistedSession, SessionStore

__all__ = ["PersistedSession", "SessionStore"]
