"""Application layer between a presentation front end and a sample store.

Store adapters are blocking; every call runs in a worker thread via
``asyncio.to_thread`` while results are applied on the event loop. ``refresh``
returns a plain ``TrackerState`` and also keeps the most recently *completed*
one on ``WeightTracker.state``; overlapping refreshes are not ordered, the last
one to finish wins.
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from .aggregate import WeeklyAverages, compute_weekly_averages
from .errors import InvalidInput, QueryFailed, TrackerError, WriteFailed
from .samples import WeightSample
from .store import SampleStore
from .weeks import default_week_start, weekly_windows

__all__ = ["TrackerState", "WeightTracker", "parse_weight"]


def parse_weight(text: str) -> float:
    """Parse a free-text weight entry in kilograms.

    Accepts surrounding whitespace and a decimal comma. Raises InvalidInput for
    anything that is not a finite number greater than zero.
    """
    cleaned = text.strip().replace(",", ".")
    try:
        value = float(cleaned)
    except ValueError:
        raise InvalidInput("Please enter a valid weight") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidInput("Please enter a valid weight")
    return value


@dataclass(frozen=True)
class TrackerState:
    recent: list[WeightSample] = field(default_factory=list)
    this_week_average: float | None = None
    last_week_average: float | None = None
    refreshed_at: datetime | None = None


class WeightTracker:
    def __init__(
        self,
        store: SampleStore,
        week_starts_on: int | None = None,
        recent_limit: int = 10,
    ) -> None:
        self.store = store
        self.week_starts_on = default_week_start(week_starts_on)
        self.recent_limit = recent_limit
        self.state = TrackerState()
        self._authorized = False

    async def authorize(self) -> None:
        """One-time authorization gate; raises Unavailable or AccessDenied."""
        if self._authorized:
            return
        await asyncio.to_thread(self.store.request_access)
        self._authorized = True

    async def save_weight(self, text: str, now: datetime | None = None) -> WeightSample:
        weight = parse_weight(text)
        sample = WeightSample(timestamp=now or datetime.now(), weight_kg=weight)
        await self.authorize()
        try:
            await asyncio.to_thread(self.store.write_sample, sample)
        except TrackerError:
            raise
        except Exception as e:  # noqa: BLE001
            raise WriteFailed(str(e)) from e
        logger.info("Saved {:.1f} kg at {}", sample.weight_kg, sample.timestamp)
        return sample

    async def load_recent(self) -> list[WeightSample]:
        try:
            return await asyncio.to_thread(self.store.query_recent, self.recent_limit)
        except QueryFailed as e:
            logger.warning("Could not load recent weights: {}", e)
            return []

    async def load_weekly_averages(self, now: datetime | None = None) -> WeeklyAverages:
        now = now or datetime.now()
        this_week, last_week = weekly_windows(now, self.week_starts_on)
        try:
            this_samples, last_samples = await asyncio.gather(
                asyncio.to_thread(self.store.query_range, this_week.start, this_week.end),
                asyncio.to_thread(self.store.query_range, last_week.start, last_week.end),
            )
        except QueryFailed as e:
            logger.warning("Could not load weekly averages: {}", e)
            return WeeklyAverages(this_week=None, last_week=None)
        return compute_weekly_averages([*this_samples, *last_samples], now, self.week_starts_on)

    async def refresh(self, now: datetime | None = None) -> TrackerState:
        now = now or datetime.now()
        await self.authorize()
        recent, averages = await asyncio.gather(self.load_recent(), self.load_weekly_averages(now))
        state = TrackerState(
            recent=recent,
            this_week_average=averages.this_week,
            last_week_average=averages.last_week,
            refreshed_at=now,
        )
        self.state = state
        return state
