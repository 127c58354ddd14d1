"""Sample store adapters.

A ``SampleStore`` is the single seam to a health-data provider: an authorization
gate, one write operation and two queries. Each call is one attempt; there is no
retry and no caching. Implementations:

* ``MemoryStore``: in-process list, with switches to simulate every failure kind.
* ``CsvStore``: a Withings-style ``weights.csv`` export (``Date``, ``Weight (kg)``).
* ``WithingsStore``: the Withings cloud via OAuth2 and ``measure?action=getmeas``.
"""

import os
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import pandas as pd
import requests
from loguru import logger

from .aggregate import filter_window
from .errors import AccessDenied, QueryFailed, Unavailable, WriteFailed
from .measure_client import fetch_weight_measurements_all
from .oauth_client import WithingsOAuthClient
from .samples import WeightSample, frame_to_samples
from .weeks import WeekWindow

__all__ = [
    "SampleStore",
    "MemoryStore",
    "CsvStore",
    "WithingsStore",
]


class SampleStore(ABC):
    """Abstract health-data store holding weight samples."""

    @abstractmethod
    def request_access(self) -> None:
        """Authorization gate to pass before any read or write.

        Raises:
            Unavailable: The store is not present.
            AccessDenied: Authorization was refused.
        """

    @abstractmethod
    def write_sample(self, sample: WeightSample) -> None:
        """Persist one sample.

        Raises:
            WriteFailed: The store rejected or could not persist the sample.
        """

    @abstractmethod
    def query_recent(self, limit: int) -> list[WeightSample]:
        """Return at most ``limit`` samples, newest first.

        Raises:
            QueryFailed: The store could not be read.
        """

    @abstractmethod
    def query_range(self, start: datetime, end: datetime) -> list[WeightSample]:
        """Return samples with ``start <= timestamp < end``, oldest first.

        Raises:
            QueryFailed: The store could not be read.
        """


class MemoryStore(SampleStore):
    """In-memory store for tests and dry runs."""

    def __init__(
        self,
        samples: Iterable[WeightSample] = (),
        available: bool = True,
        authorized: bool = True,
    ) -> None:
        self.samples: list[WeightSample] = list(samples)
        self.available = available
        self.authorized = authorized
        self.fail_queries = False
        self.fail_writes = False
        self.calls: list[str] = []

    def request_access(self) -> None:
        self.calls.append("request_access")
        if not self.available:
            raise Unavailable("In-memory store marked unavailable")
        if not self.authorized:
            raise AccessDenied("In-memory store access denied")

    def write_sample(self, sample: WeightSample) -> None:
        self.calls.append("write_sample")
        if self.fail_writes:
            raise WriteFailed("in-memory store rejected the write")
        self.samples.append(sample)

    def query_recent(self, limit: int) -> list[WeightSample]:
        self.calls.append("query_recent")
        if self.fail_queries:
            raise QueryFailed("in-memory store query failed")
        return sorted(self.samples, key=lambda s: s.timestamp, reverse=True)[:limit]

    def query_range(self, start: datetime, end: datetime) -> list[WeightSample]:
        self.calls.append("query_range")
        if self.fail_queries:
            raise QueryFailed("in-memory store query failed")
        window = WeekWindow(start=start, end=end)
        return sorted((s for s in self.samples if window.contains(s.timestamp)), key=lambda s: s.timestamp)


DATE_COL = "Date"
WEIGHT_COL = "Weight (kg)"
CSV_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Withings exports are not consistent about capitalization; normalize known variants.
_CSV_HEADER_NORMALIZATION: dict[str, str] = {
    "date": DATE_COL,
    "weight (kg)": WEIGHT_COL,
    "weight": WEIGHT_COL,
}


def _canonical_header(name: str) -> str:
    cleaned = name.strip()
    return _CSV_HEADER_NORMALIZATION.get(cleaned.lower(), cleaned)


def _local_naive(ts: datetime) -> datetime:
    """CSV exports carry local wall-clock times without an offset."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone().replace(tzinfo=None)


def _read_weights_csv(path: Path) -> pd.DataFrame:
    """Load a weights CSV into a ``timestamp``/``weight_kg`` frame, oldest first."""
    try:
        df = pd.read_csv(path)
    except (OSError, pd.errors.ParserError) as e:
        raise QueryFailed(f"Could not read '{path}': {e}") from e
    except pd.errors.EmptyDataError:
        return pd.DataFrame(columns=["timestamp", "weight_kg"])
    df = df.rename(columns={c: _canonical_header(c) for c in df.columns})
    missing = [c for c in (DATE_COL, WEIGHT_COL) if c not in df.columns]
    if missing:
        raise QueryFailed(f"'{path}' is missing required columns: {', '.join(missing)}")
    timestamps = pd.to_datetime(df[DATE_COL], errors="coerce")
    if timestamps.isna().any():
        raise QueryFailed(f"Some Date values in '{path}' could not be parsed.")
    weights = pd.to_numeric(df[WEIGHT_COL], errors="coerce")
    # Rows for other measurements (fat mass only, ...) have no weight.
    out = pd.DataFrame({"timestamp": timestamps, "weight_kg": weights}).dropna(subset=["weight_kg"])
    out = out[out["weight_kg"] > 0]
    return out.sort_values("timestamp", kind="stable").reset_index(drop=True)


class CsvStore(SampleStore):
    """Weight samples kept in a Withings-style CSV export."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def request_access(self) -> None:
        directory = self.path.parent
        if not directory.is_dir():
            raise Unavailable(f"Data directory does not exist: {directory}")
        if self.path.exists():
            if not os.access(self.path, os.R_OK | os.W_OK):
                raise AccessDenied(f"No read/write permission for {self.path}")
        elif not os.access(directory, os.W_OK):
            raise AccessDenied(f"Cannot create {self.path}: directory not writable")

    def _frame(self) -> pd.DataFrame:
        if not self.path.exists():
            return pd.DataFrame(columns=["timestamp", "weight_kg"])
        return _read_weights_csv(self.path)

    def write_sample(self, sample: WeightSample) -> None:
        row = {
            DATE_COL: _local_naive(sample.timestamp).strftime(CSV_DATE_FORMAT),
            WEIGHT_COL: sample.weight_kg,
        }
        try:
            if self.path.exists() and self.path.stat().st_size > 0:
                # Keep the existing header (and any extra export columns) intact.
                header = list(pd.read_csv(self.path, nrows=0).columns)
                by_canonical = {_canonical_header(c): c for c in header}
                if DATE_COL not in by_canonical or WEIGHT_COL not in by_canonical:
                    raise WriteFailed(f"'{self.path}' does not look like a weights CSV")
                line = pd.DataFrame([{by_canonical[k]: v for k, v in row.items()}]).reindex(columns=header)
                line.to_csv(self.path, mode="a", header=False, index=False)
            else:
                pd.DataFrame([row]).to_csv(self.path, index=False)
        except (OSError, pd.errors.ParserError) as e:
            raise WriteFailed(str(e)) from e
        logger.debug("Appended {:.1f} kg at {} to {}", sample.weight_kg, row[DATE_COL], self.path)

    def query_recent(self, limit: int) -> list[WeightSample]:
        df = self._frame().sort_values("timestamp", ascending=False, kind="stable")
        return frame_to_samples(df.head(limit))

    def query_range(self, start: datetime, end: datetime) -> list[WeightSample]:
        window = WeekWindow(start=_local_naive(start), end=_local_naive(end))
        return frame_to_samples(filter_window(self._frame(), window))


class WithingsStore(SampleStore):
    """Withings health cloud. Read-only: the public API has no weight write call."""

    def __init__(self, client: WithingsOAuthClient | None = None, config_path: Path | None = None) -> None:
        self._client = client
        self._config_path = config_path

    @property
    def client(self) -> WithingsOAuthClient:
        if self._client is None:
            self._client = WithingsOAuthClient.from_config(self._config_path)
        return self._client

    def request_access(self) -> None:
        try:
            self.client.get_valid_access_token()
        except requests.RequestException as e:
            raise Unavailable(f"Withings is unreachable: {e}") from e

    def write_sample(self, sample: WeightSample) -> None:
        raise WriteFailed("Withings does not accept weight entries through its public API")

    def _fetch(self, start: datetime | None = None, end: datetime | None = None) -> pd.DataFrame:
        try:
            return fetch_weight_measurements_all(self.client, start=start, end=end)
        except (AccessDenied, Unavailable) as e:
            raise QueryFailed(str(e)) from e

    def query_recent(self, limit: int) -> list[WeightSample]:
        df = self._fetch().sort_values("timestamp", ascending=False, kind="stable")
        return frame_to_samples(df.head(limit))

    def query_range(self, start: datetime, end: datetime) -> list[WeightSample]:
        df = self._fetch(start=start, end=end)
        # getmeas treats enddate as inclusive; re-apply the half-open rule.
        window = WeekWindow(start=start, end=end)
        if not df.empty and start.tzinfo is None:
            # Naive bounds are local wall-clock times, as getmeas' startdate/enddate were.
            local_tz = datetime.now().astimezone().tzinfo
            df = df.assign(timestamp=df["timestamp"].dt.tz_convert(local_tz).dt.tz_localize(None))
        return frame_to_samples(filter_window(df, window))
