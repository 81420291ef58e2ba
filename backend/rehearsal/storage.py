"""
Key-value storage for selection history, session progress and cached
generated questions. Callers pass composite keys built by the helpers below.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from rehearsal.db import SessionFactory, get_session
from rehearsal.errors import PersistenceError
from rehearsal.models import KeyValueRecord

LOG = logging.getLogger("interview.storage")

ANONYMOUS_USER = "anon"


def history_key(user_id: Optional[str], topic_id: str) -> str:
    return f"question_history:{user_id or ANONYMOUS_USER}:{topic_id}"


def progress_key(user_id: Optional[str], topic_id: str) -> str:
    return f"progress:{user_id or ANONYMOUS_USER}:{topic_id}"


def generated_key(user_id: Optional[str], topic_id: str, count: int) -> str:
    return f"generated:{user_id or ANONYMOUS_USER}:{topic_id}:{count}"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def set(self, key: str, value: Dict[str, Any]) -> None: ...

    async def clear(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store. Values are deep-copied so callers can't alias stored state."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(value)

    async def clear(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SqlStore:
    """Store backed by the KeyValueRecord table. Last write wins per key."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                row = await session.get(KeyValueRecord, key)
        except SQLAlchemyError as exc:
            LOG.error("Failed to read key %s: %s", key, exc)
            raise PersistenceError(f"Could not load saved state ({key})") from exc
        if row is None:
            return None
        try:
            value = json.loads(row.payload)
        except json.JSONDecodeError:
            LOG.warning("Discarding unreadable stored value (key=%s)", key)
            return None
        return value if isinstance(value, dict) else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        payload = json.dumps(value)
        async with self._session_factory() as session:
            try:
                row = await session.get(KeyValueRecord, key)
                if row is None:
                    row = KeyValueRecord(key=key, payload=payload)
                else:
                    row.payload = payload
                    row.updated_at = datetime.utcnow()
                session.add(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                LOG.error("Failed to write key %s: %s", key, exc)
                raise PersistenceError(f"Could not save progress ({key})") from exc

    async def clear(self, key: str) -> None:
        async with self._session_factory() as session:
            try:
                row = await session.get(KeyValueRecord, key)
                if row is not None:
                    await session.delete(row)
                    await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                LOG.error("Failed to clear key %s: %s", key, exc)
                raise PersistenceError(f"Could not clear progress ({key})") from exc
