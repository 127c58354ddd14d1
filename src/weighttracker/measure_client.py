"""Withings measure API client utilities.

Focuses on body weight returned by the `measure` service (`action=getmeas`).
Provides helpers to fetch and paginate results into a ``timestamp``/``weight_kg``
DataFrame, the same frame layout the aggregation engine consumes.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import pandas as pd
import requests
from loguru import logger

from .errors import QueryFailed
from .oauth_client import WithingsOAuthClient
from .samples import SAMPLE_COLUMNS

MEASURE_ENDPOINT = "https://wbsapi.withings.net/measure"
REAL_MEASUREMENT_CATEGORY = 1  # 2 = user objectives


class MeasureType(IntEnum):
    WEIGHT_KG = 1


def _normalize_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=UTC)


def _decode_measure(value: int, unit: int) -> float:
    # Real value is value * 10^unit
    return value * (10**unit)


def _transform_measure_groups(groups: Sequence[dict[str, Any]]) -> pd.DataFrame:
    rows: list[dict[str, Any]] = []
    for grp in groups:
        if grp.get("category") != REAL_MEASUREMENT_CATEGORY:
            continue
        weight: float | None = None
        for m in grp.get("measures", []):
            if m.get("type") is None or int(m["type"]) != MeasureType.WEIGHT_KG:
                continue
            weight = _decode_measure(int(m.get("value", 0)), int(m.get("unit", 0)))
        if weight is None or weight <= 0:
            continue
        rows.append(
            {
                "timestamp": _normalize_timestamp(int(grp.get("date", grp.get("created", 0)))),
                "group_id": int(grp.get("grpid", 0)),
                "weight_kg": weight,
            }
        )
    if not rows:
        return pd.DataFrame(columns=[*SAMPLE_COLUMNS, "group_id"])
    df = pd.DataFrame(rows, columns=[*SAMPLE_COLUMNS, "group_id"])
    return df.sort_values("timestamp").reset_index(drop=True)


def fetch_weight_measurements(
    client: WithingsOAuthClient,
    start: datetime | None = None,
    end: datetime | None = None,
    offset: int | None = None,
) -> pd.DataFrame:
    """Fetch one page of weight measurements.

    Args:
        client: Authorized WithingsOAuthClient.
        start: Start datetime (inclusive), omitted from the request when None.
        end: End datetime, omitted from the request when None. Withings treats it as
            inclusive; callers needing half-open ranges filter afterwards.
        offset: Pagination offset (if continuing a previous call).

    Returns:
        DataFrame with ``timestamp``, ``weight_kg`` and ``group_id`` columns; pagination
        info is stored in ``df.attrs`` (``more``, ``offset``).

    Raises:
        QueryFailed: On HTTP errors, non-zero API status or malformed bodies.
    """
    params: dict[str, Any] = {
        "action": "getmeas",
        "meastypes": str(int(MeasureType.WEIGHT_KG)),
        "category": REAL_MEASUREMENT_CATEGORY,
    }
    if start is not None:
        params["startdate"] = int(start.timestamp())
    if end is not None:
        params["enddate"] = int(end.timestamp())
    if offset is not None:
        params["offset"] = offset

    try:
        # A token refresh may hit the network too.
        headers = {"Authorization": f"Bearer {client.get_valid_access_token()}"}
        resp = requests.get(MEASURE_ENDPOINT, params=params, headers=headers, timeout=30)
    except requests.RequestException as e:
        raise QueryFailed(f"measure getmeas request failed: {e}") from e
    if resp.status_code != 200:
        raise QueryFailed(f"measure getmeas HTTP {resp.status_code}: {resp.text}")
    try:
        data = resp.json()
    except ValueError as e:
        raise QueryFailed(f"measure getmeas returned a non-JSON body: {e}") from e
    if data.get("status") != 0:
        raise QueryFailed(f"measure getmeas failed with status {data.get('status')}")
    body = data.get("body", {})
    groups = body.get("measuregrps", [])
    if not isinstance(groups, list):
        raise QueryFailed("Unexpected response structure: measuregrps not a list")
    df = _transform_measure_groups(groups)
    df.attrs["more"] = body.get("more", 0)
    df.attrs["offset"] = body.get("offset")
    return df


def fetch_weight_measurements_all(
    client: WithingsOAuthClient,
    start: datetime | None = None,
    end: datetime | None = None,
) -> pd.DataFrame:
    """Fetch ALL pages of weight measurements between start and end.

    Args:
        client: Authorized OAuth client.
        start/end: Datetime range passed through to :func:`fetch_weight_measurements`.
    Returns:
        DataFrame of all pages combined, oldest first, de-duplicated by group id.
    """
    frames: list[pd.DataFrame] = []
    current_offset: int | None = None
    pages = 0
    while True:
        logger.debug("Getting page {} at offset {}", pages + 1, current_offset or 0)
        page_df = fetch_weight_measurements(client, start=start, end=end, offset=current_offset)
        frames.append(page_df)
        more = int(page_df.attrs.get("more", 0))
        next_offset = page_df.attrs.get("offset")
        pages += 1
        if more != 1 or next_offset is None:
            break
        current_offset = int(next_offset)
    non_empty = [f for f in frames if not f.empty]
    if not non_empty:
        return frames[-1]
    full = pd.concat(non_empty, ignore_index=True)
    full = full.sort_values("timestamp").drop_duplicates("group_id", keep="last")
    full.attrs["more"] = 0
    full.attrs["offset"] = None
    logger.debug("Fetched {} weight measurement(s) in {} page(s)", len(full), pages)
    return full.reset_index(drop=True)


__all__ = [
    "MeasureType",
    "fetch_weight_measurements",
    "fetch_weight_measurements_all",
]
