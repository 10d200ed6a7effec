"""Storage of match event logs.

The log is the only thing persisted; derived state is recomputed on load.
Saves replace the whole stored log so repeating one is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import sentry_sdk
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import (
    AUTOSAVE_EVENT_THRESHOLD,
    AUTOSAVE_INTERVAL_SECONDS,
    AUTOSAVE_TRIGGER_TYPES,
)
from ..models import MatchEventRecord, ScoutedMatch
from ..schemas import DerivedMatchState, dump_events
from ..session import MatchSession
from ..time_utils import coerce_utc
from .stats import match_result_string

logger = logging.getLogger(__name__)


def _match_status(state: DerivedMatchState) -> str:
    return "finished" if state.is_match_finished else "in_progress"


async def save_match_events(
    session: AsyncSession,
    match_id: str,
    events: Iterable,
    *,
    our_side: str = "home",
    team_names: Optional[Mapping[str, Optional[str]]] = None,
    status: str = "in_progress",
    result: Optional[str] = None,
) -> int:
    """Replace the stored log of ``match_id`` with ``events``.

    Creates the match row on first save. Returns the number of stored events.
    """
    rows = dump_events(events)
    team_names = team_names or {}

    match = await session.get(ScoutedMatch, match_id)
    if match is None:
        match = ScoutedMatch(id=match_id)
        session.add(match)
    match.our_side = our_side
    match.home_team_name = team_names.get("home")
    match.away_team_name = team_names.get("away")
    match.status = status
    match.result = result
    match.event_count = len(rows)

    await session.execute(
        delete(MatchEventRecord).where(MatchEventRecord.match_id == match_id)
    )
    for seq, (event, row) in enumerate(zip(events, rows)):
        session.add(
            MatchEventRecord(
                id=row["id"],
                match_id=match_id,
                seq=seq,
                type=row["type"],
                payload=row,
                created_at=coerce_utc(event.timestamp),
            )
        )
    await session.commit()
    return len(rows)


async def load_match_events(
    session: AsyncSession, match_id: str
) -> Tuple[Optional[ScoutedMatch], List[dict]]:
    """Return the match row and its stored events (wire dicts, in order)."""
    match = await session.get(ScoutedMatch, match_id)
    if match is None:
        return None, []
    rows = (
        await session.execute(
            select(MatchEventRecord)
            .where(MatchEventRecord.match_id == match_id)
            .order_by(MatchEventRecord.seq)
        )
    ).scalars().all()
    return match, [row.payload for row in rows]


@dataclass(frozen=True)
class AutoSavePolicy:
    """When unsaved changes should be flushed."""

    event_threshold: int = AUTOSAVE_EVENT_THRESHOLD
    interval_seconds: float = AUTOSAVE_INTERVAL_SECONDS
    trigger_types: FrozenSet[str] = field(
        default_factory=lambda: frozenset(AUTOSAVE_TRIGGER_TYPES)
    )

    def should_save(self, pending: int, elapsed: float, types: Iterable[str] = ()) -> bool:
        if pending <= 0:
            return False
        if self.trigger_types & set(types):
            return True
        if self.event_threshold and pending >= self.event_threshold:
            return True
        if self.interval_seconds and elapsed >= self.interval_seconds:
            return True
        return False


class MatchRecorder:
    """Glue a :class:`MatchSession` to storage.

    Actions go to the session; after each one the policy decides whether to
    flush. A failed save is logged and reported but never raised: the
    changes stay pending and the next trigger tries again.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        match: Optional[MatchSession] = None,
        *,
        policy: Optional[AutoSavePolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self.match = match or MatchSession()
        self.policy = policy or AutoSavePolicy()
        self._clock = clock
        self._last_save = clock()
        self.failed_saves = 0

    async def open(
        self,
        match_id: str,
        our_side: Optional[str] = None,
        team_names: Optional[Mapping[str, Optional[str]]] = None,
    ) -> DerivedMatchState:
        """Load ``match_id`` from storage (or start it empty) into the session."""
        async with self._session_factory() as db:
            stored, rows = await load_match_events(db, match_id)
        if stored is not None:
            our_side = our_side or stored.our_side
            team_names = team_names or {
                "home": stored.home_team_name,
                "away": stored.away_team_name,
            }
        state = self.match.load(
            match_id, rows, our_side or self.match.our_side, team_names
        )
        self._last_save = self._clock()
        return state

    async def record(self, type_: str, payload=None) -> List:
        """Add an action to the session and flush if the policy says so."""
        events = self.match.add_event(type_, payload)
        await self.maybe_save()
        return events

    async def undo_last_action(self) -> DerivedMatchState:
        state = self.match.undo_last_action()
        await self.maybe_save()
        return state

    async def maybe_save(self) -> bool:
        elapsed = self._clock() - self._last_save
        if not self.policy.should_save(
            self.match.changes_since_save, elapsed, self.match.types_since_save
        ):
            return False
        return await self.save()

    async def save(self) -> bool:
        match = self.match
        if match.match_id is None:
            return False
        state = match.state
        events = match.events
        try:
            async with self._session_factory() as db:
                count = await save_match_events(
                    db,
                    match.match_id,
                    events,
                    our_side=match.our_side,
                    team_names=match.team_names,
                    status=_match_status(state),
                    result=match_result_string(state),
                )
        except SQLAlchemyError as exc:
            self.failed_saves += 1
            logger.exception(
                "Saving match %s failed (%d pending change(s))",
                match.match_id,
                match.changes_since_save,
            )
            sentry_sdk.capture_exception(exc)
            return False

        match.mark_saved()
        self._last_save = self._clock()
        logger.info("Saved match %s: %d event(s)", match.match_id, count)
        return True

    async def close(self) -> bool:
        """Flush anything still pending."""
        if self.match.changes_since_save == 0:
            return True
        return await self.save()
