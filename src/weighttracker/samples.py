"""Weight sample record shared by stores, the aggregation engine and the CLI."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import pandas as pd

from .errors import InvalidInput

__all__ = ["WeightSample", "samples_to_frame", "frame_to_samples"]

SAMPLE_COLUMNS: tuple[str, ...] = ("timestamp", "weight_kg")


@dataclass(frozen=True)
class WeightSample:
    timestamp: datetime
    weight_kg: float  # always kilograms, strictly positive

    def __post_init__(self) -> None:
        if not math.isfinite(self.weight_kg) or self.weight_kg <= 0:
            raise InvalidInput(f"Weight must be a positive number, got {self.weight_kg!r}")


def samples_to_frame(samples: Iterable[WeightSample]) -> pd.DataFrame:
    """Build a ``timestamp``/``weight_kg`` DataFrame from samples (input order kept)."""
    samples = list(samples)
    if not samples:
        return pd.DataFrame(columns=list(SAMPLE_COLUMNS))
    timestamps = [s.timestamp for s in samples]
    # Aware timestamps may come from different zones; a UTC column compares correctly with any aware bound.
    aware = all(ts.tzinfo is not None for ts in timestamps)
    return pd.DataFrame(
        {
            "timestamp": pd.to_datetime(timestamps, utc=aware),
            "weight_kg": [float(s.weight_kg) for s in samples],
        },
        columns=list(SAMPLE_COLUMNS),
    )


def frame_to_samples(df: pd.DataFrame) -> list[WeightSample]:
    """Inverse of :func:`samples_to_frame`; rows without a weight are skipped."""
    if df.empty:
        return []
    out: list[WeightSample] = []
    for ts, weight in zip(df["timestamp"], df["weight_kg"], strict=True):
        if pd.isna(ts) or pd.isna(weight):
            continue
        out.append(WeightSample(timestamp=pd.Timestamp(ts).to_pydatetime(), weight_kg=float(weight)))
    return out
