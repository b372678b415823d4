"""
services/timeline_service.py — Advisory audit timeline
-------------------------------------------------------
Records "match completed", "round N generated", "tournament completed" and
operator actions for an external timeline. The engine writes here but never
reads it back, so a failed timeline write is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import aiosqlite

from database import db_session
from services.status_enums import TimelineEvent

log = logging.getLogger(__name__)


@dataclass
class TimelineEntry:
    id: int
    tournament_id: int
    action: str
    actor: str
    detail: Optional[str] = None
    created_at: Optional[int] = None


TimelineListener = Callable[[TimelineEntry], Awaitable[None]]


class TimelineService:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        self._listeners: List[TimelineListener] = []

    def subscribe(self, listener: TimelineListener) -> None:
        """Register an async callback invoked after each recorded event."""
        self._listeners.append(listener)

    async def record(
        self,
        tournament_id: int,
        event: TimelineEvent,
        actor: str = "system",
        detail: Optional[str] = None,
    ) -> Optional[TimelineEntry]:
        try:
            now = int(time.time())
            async with db_session(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO timeline (tournament_id, action, actor, detail, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (tournament_id, event.value, actor, detail, now),
                )
                await db.commit()
        except aiosqlite.Error as e:
            log.warning(
                f"[TIMELINE] Failed to record {event.value} for tournament "
                f"{tournament_id}: {e}"
            )
            return None

        entry = TimelineEntry(
            id=cursor.lastrowid,
            tournament_id=tournament_id,
            action=event.value,
            actor=actor,
            detail=detail,
            created_at=now,
        )

        for listener in self._listeners:
            try:
                await listener(entry)
            except Exception as e:
                log.warning(f"[TIMELINE] Listener failed for {event.value}: {e}")

        return entry

    async def list_events(self, tournament_id: int) -> List[TimelineEntry]:
        async with db_session(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM timeline WHERE tournament_id = ? ORDER BY id ASC",
                (tournament_id,),
            )
            rows = await cursor.fetchall()
        return [TimelineEntry(**dict(row)) for row in rows]
