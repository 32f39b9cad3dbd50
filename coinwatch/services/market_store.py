"""Refresh engine: holds the watchlist ids and the latest fetch state.

Every ``set_identifiers``/``reload`` call bumps a generation counter and
starts a fetch tagged with it.  When a fetch resolves, its result is only
committed if its generation is still the current one; late arrivals from
superseded fetches are dropped without touching state or notifying
subscribers.  The in-flight HTTP call itself is never aborted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from coinwatch.providers.base import (
    AssetRecord,
    DataProvider,
    ErrorKind,
    MarketDataError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fetch state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Success:
    records: tuple[AssetRecord, ...]


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    stale_records: tuple[AssetRecord, ...] | None = None


FetchState = Idle | Loading | Success | Failure

Subscriber = Callable[[FetchState], None]

_UNEXPECTED_MESSAGE = "Unable to load prices."


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MarketDataStore:
    """Change-driven, soft-cancellable market data source for one watchlist."""

    def __init__(self, provider: DataProvider) -> None:
        self._provider = provider
        self._ids: tuple[str, ...] | None = None
        self._generation = 0
        self._state: FetchState = Idle()
        self._last_records: tuple[AssetRecord, ...] = ()
        self._has_succeeded = False
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # -- Read side -----------------------------------------------------------

    @property
    def state(self) -> FetchState:
        return self._state

    def current_state(self) -> FetchState:
        """Snapshot of the current fetch state."""
        return self._state

    @property
    def identifiers(self) -> tuple[str, ...]:
        return self._ids or ()

    @property
    def last_records(self) -> tuple[AssetRecord, ...]:
        """Records from the most recent successful fetch."""
        return self._last_records

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for state changes; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # -- Triggers ------------------------------------------------------------

    def set_identifiers(self, ids: Sequence[str]) -> asyncio.Task | None:
        """Track *ids*; refetch only if they differ by value from the current set."""
        new_ids = tuple(ids)
        if new_ids == self._ids:
            return None
        return self._start_cycle(new_ids)

    def reload(self) -> asyncio.Task:
        """Refetch the current ids unconditionally."""
        return self._start_cycle(self._ids or ())

    async def wait_idle(self) -> None:
        """Wait until every fetch started so far has resolved."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel in-flight fetches and stop committing results."""
        self._closed = True
        self._generation += 1
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._subscribers.clear()

    # -- Internals -----------------------------------------------------------

    def _start_cycle(self, ids: tuple[str, ...]) -> asyncio.Task:
        # Nothing is mutated until both checks pass.
        if self._closed:
            raise RuntimeError("MarketDataStore is closed")
        loop = asyncio.get_running_loop()

        self._ids = ids
        self._generation += 1
        generation = self._generation
        self._commit(Loading())

        task = loop.create_task(self._fetch(generation, list(ids)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch(self, generation: int, ids: list[str]) -> None:
        try:
            records = await self._provider.fetch_market_data(ids)
        except MarketDataError as exc:
            if self._is_current(generation):
                logger.warning("Market fetch failed (%s): %s", exc.kind.value, exc)
            self._resolve(generation, self._failure(exc.kind, exc.user_message))
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            if self._is_current(generation):
                logger.exception("Market fetch failed unexpectedly")
            self._resolve(
                generation, self._failure(ErrorKind.UNEXPECTED, _UNEXPECTED_MESSAGE)
            )
            return

        result = tuple(records)
        if self._is_current(generation):
            self._last_records = result
            self._has_succeeded = True
        self._resolve(generation, Success(result))

    def _failure(self, kind: ErrorKind, message: str) -> Failure:
        stale = self._last_records if self._has_succeeded else None
        return Failure(kind=kind, message=message, stale_records=stale)

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _resolve(self, generation: int, state: FetchState) -> bool:
        """Commit *state* if *generation* is current; returns whether it was."""
        if not self._is_current(generation):
            logger.debug(
                "Discarding result of superseded fetch %d (current %d)",
                generation, self._generation,
            )
            return False
        self._commit(state)
        return True

    def _commit(self, state: FetchState) -> None:
        self._state = state
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("State subscriber raised")
