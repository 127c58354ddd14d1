import asyncio
import sys
from datetime import datetime  # used for current time reference
from pathlib import Path

from cyclopts import App
from loguru import logger

from .config import TrackerSettings, get_config_dir, load_settings
from .errors import TrackerError
from .oauth_client import DEFAULT_SCOPES, WithingsOAuthClient
from .samples import WeightSample
from .store import CsvStore, MemoryStore, SampleStore, WithingsStore
from .tracker import TrackerState, WeightTracker
from .weeks import parse_weekday, week_code, weekly_windows

app = App(help="Record body-weight samples and compare this week's average with last week's.")

NO_DATA = "No data"


def _setup_logging(verbose: bool = False) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level="DEBUG" if verbose else "WARNING",
    )


def _format_weight(value: float) -> str:
    return f"{value:.1f} kg"


def _format_average(value: float | None) -> str:
    return NO_DATA if value is None else _format_weight(value)


def _format_sample(sample: WeightSample) -> str:
    ts = sample.timestamp
    if ts.tzinfo is not None:
        ts = ts.astimezone()  # show in local time
    return f"{ts:%Y-%m-%d}  {_format_weight(sample.weight_kg)}"


def _render_state(state: TrackerState, week_starts_on: int) -> str:
    """Text rendering of a refresh result: averages first, then recent entries."""
    now = state.refreshed_at or datetime.now()
    this_week, last_week = weekly_windows(now, week_starts_on)
    lines = [
        f"This week ({week_code(this_week.start)}): {_format_average(state.this_week_average)}",
        f"Last week ({week_code(last_week.start)}): {_format_average(state.last_week_average)}",
        "",
        "Recent entries:",
    ]
    if not state.recent:
        lines.append("No entries yet")
    else:
        lines.extend(_format_sample(s) for s in state.recent)
    return "\n".join(lines)


def _resolve_settings(
    store: str | None = None,
    csv_path: Path | None = None,
    week_starts_on: str | None = None,
    limit: int | None = None,
) -> TrackerSettings:
    """Config file settings with command-line overrides applied."""
    try:
        settings = load_settings()
        return TrackerSettings(
            store=(store or settings.store).lower(),
            csv_path=csv_path.expanduser() if csv_path is not None else settings.csv_path,
            week_starts_on=(
                parse_weekday(week_starts_on) if week_starts_on is not None else settings.week_starts_on
            ),
            recent_limit=limit if limit is not None else settings.recent_limit,
        )
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}") from e


def _build_store(settings: TrackerSettings) -> SampleStore:
    if settings.store == "csv":
        return CsvStore(settings.csv_path)
    if settings.store == "withings":
        return WithingsStore()
    if settings.store == "memory":
        return MemoryStore()
    raise SystemExit(f"Unknown store '{settings.store}' (expected csv, withings or memory)")


def _build_tracker(settings: TrackerSettings) -> WeightTracker:
    if settings.recent_limit <= 0:
        raise SystemExit("--limit must be positive")
    return WeightTracker(
        _build_store(settings),
        week_starts_on=settings.week_starts_on,
        recent_limit=settings.recent_limit,
    )


@app.command(help="Save today's weight (kilograms) and show the updated summary.")
def save(
    weight: str,
    store: str | None = None,
    csv_path: Path | None = None,
    verbose: bool = False,
) -> None:
    _setup_logging(verbose)
    settings = _resolve_settings(store=store, csv_path=csv_path)
    tracker = _build_tracker(settings)

    async def _run() -> TrackerState:
        await tracker.save_weight(weight)
        return await tracker.refresh()

    try:
        state = asyncio.run(_run())
    except TrackerError as e:
        raise SystemExit(str(e)) from e
    print("Weight saved successfully!")
    print()
    print(_render_state(state, tracker.week_starts_on))


@app.command(help="Show the most recent entries and this/last week averages.")
def show(
    store: str | None = None,
    csv_path: Path | None = None,
    week_starts_on: str | None = None,
    limit: int | None = None,
    verbose: bool = False,
) -> None:
    _setup_logging(verbose)
    settings = _resolve_settings(store=store, csv_path=csv_path, week_starts_on=week_starts_on, limit=limit)
    tracker = _build_tracker(settings)
    try:
        state = asyncio.run(tracker.refresh())
    except TrackerError as e:
        raise SystemExit(str(e)) from e
    print(_render_state(state, tracker.week_starts_on))


@app.command(help="Run interactive OAuth2 authorization against Withings and store tokens locally.")
def authorize(scopes: list[str] | None = None, verbose: bool = False) -> None:
    """Open browser, capture authorization code via local redirect, exchange for tokens."""
    _setup_logging(verbose)
    if not scopes:
        scopes = list(DEFAULT_SCOPES)
    try:
        client = WithingsOAuthClient.from_config()
        tokens = client.authorize_interactive(scopes)
    except TrackerError as e:
        raise SystemExit(str(e)) from e
    # Print summary (avoid printing secrets)
    print("Access token (truncated):", tokens.access_token[:12] + "...")
    print("Refresh token stored. User ID:", tokens.userid)


@app.command(name="config-dir", help="Print the path to the configuration directory.")
def config_dir() -> None:
    print(get_config_dir())
