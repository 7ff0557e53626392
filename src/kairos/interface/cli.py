"""Kairos CLI — analytics queries, server, and config commands."""

import asyncio
import json
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from fastapi.encoders import jsonable_encoder

from kairos.application.analytics.service import LearningAnalyticsService
from kairos.application.config import resolve_config
from kairos.application.factory import build_analytics_service
from kairos.domain.errors import AnalyticsError

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="kairos: learning analytics for spaced-repetition review logs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage kairos configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

EXIT_CODES = {
    "not_found": 2,
    "range_too_large": 3,
    "timeout": 4,
    "store_unavailable": 5,
}

NowOption = Annotated[
    datetime | None,
    typer.Option(help="Evaluate as of this instant (ISO 8601, UTC if naive)."),
]


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    backend: Annotated[str | None, typer.Option(help="Event store: sql or memory.")] = None,
    database_url: Annotated[
        str | None, typer.Option(help="SQLAlchemy URL of the event store.")
    ] = None,
    fixture: Annotated[
        Path | None, typer.Option(help="YAML/JSON events file for the memory backend.")
    ] = None,
    timeout: Annotated[float | None, typer.Option(help="Per-call deadline in seconds.")] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for kairos."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "backend": backend,
        "database_url": database_url,
        "fixture_path": fixture,
        "query_timeout": timeout,
    }
    if verbose:
        logging.getLogger("kairos").setLevel(logging.DEBUG if verbose > 1 else logging.INFO)


def _service(ctx: typer.Context) -> LearningAnalyticsService:
    overrides = (ctx.obj or {}).get("overrides", {})
    return build_analytics_service(resolve_config(overrides))


def _run(
    ctx: typer.Context,
    query: Callable[[LearningAnalyticsService], Awaitable[Any]],
) -> None:
    """Run one query and print its result as JSON; analytics errors become exit codes."""
    service = _service(ctx)
    try:
        result = asyncio.run(query(service))
    except AnalyticsError as e:
        typer.secho(f"Error ({e.code}): {e}", fg="red", err=True)
        raise typer.Exit(EXIT_CODES.get(e.code, 1)) from None
    typer.echo(json.dumps(jsonable_encoder(result), indent=2))


# ---------------------------------------------------------------------------
# User analytics
# ---------------------------------------------------------------------------


@app.command()
def profile(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    now: NowOption = None,
):
    """Full learning profile: velocity, struggle, patterns and study habits."""
    _run(ctx, lambda s: s.get_user_learning_profile(user_id, now=now))


@app.command()
def velocity(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    weeks: Annotated[int, typer.Option(help="Weeks of history (1-52).")] = 12,
    now: NowOption = None,
):
    """Weekly mastery velocity and trend."""
    _run(ctx, lambda s: s.get_user_velocity_history(user_id, weeks, now=now))


@app.command()
def daily(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    days: Annotated[int, typer.Option(help="Days of history (1-365).")] = 30,
    now: NowOption = None,
):
    """Per-day review summary."""
    _run(ctx, lambda s: s.get_daily_summary(user_id, days, now=now))


@app.command()
def struggling(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    threshold: Annotated[float, typer.Option(help="Minimum struggle score (0-1).")] = 0.4,
    limit: Annotated[int, typer.Option(help="Maximum cards (1-100).")] = 20,
    by_deck: Annotated[bool, typer.Option("--by-deck", help="Group by deck.")] = False,
    now: NowOption = None,
):
    """Cards the learner is struggling with, worst first."""
    if by_deck:
        _run(ctx, lambda s: s.get_struggling_cards_by_deck(user_id, now=now))
    else:
        _run(ctx, lambda s: s.get_struggling_cards(user_id, threshold, limit, now=now))


@app.command()
def interference(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    deck: Annotated[str | None, typer.Option(help="Restrict to one deck.")] = None,
    now: NowOption = None,
):
    """Card pairs that fail together when reviewed close together."""
    _run(ctx, lambda s: s.detect_interference_patterns(user_id, deck, now=now))


@app.command()
def prerequisites(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    deck: Annotated[str | None, typer.Option(help="Restrict to one deck.")] = None,
    now: NowOption = None,
):
    """Struggling cards whose declared prerequisites are weak."""
    _run(ctx, lambda s: s.detect_prerequisite_gaps(user_id, deck, now=now))


@app.command()
def fatigue(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    now: NowOption = None,
):
    """Within-session accuracy decay and recommended session length."""
    _run(ctx, lambda s: s.analyze_fatigue_decay(user_id, now=now))


@app.command("time-of-day")
def time_of_day(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id.")],
    now: NowOption = None,
):
    """Accuracy and pace by local hour of day."""
    _run(ctx, lambda s: s.analyze_time_of_day_effects(user_id, now=now))


# ---------------------------------------------------------------------------
# Cards, decks, sessions
# ---------------------------------------------------------------------------


@app.command()
def difficulty(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card id.")],
    user: Annotated[str | None, typer.Option(help="Compare this learner to the population.")] = None,
    now: NowOption = None,
):
    """Population difficulty of one card."""
    _run(ctx, lambda s: s.get_card_difficulty_metrics(card_id, user, now=now))


@app.command()
def hardest(
    ctx: typer.Context,
    deck_id: Annotated[str, typer.Argument(help="Deck id.")],
    limit: Annotated[int, typer.Option(help="Maximum cards (1-50).")] = 10,
    now: NowOption = None,
):
    """Hardest cards of a deck across all learners."""
    _run(ctx, lambda s: s.get_deck_hardest_cards(deck_id, limit, now=now))


@app.command("session-health")
def session_health(
    ctx: typer.Context,
    session_id: Annotated[str, typer.Argument(help="Session id.")],
    live: Annotated[bool, typer.Option("--live", help="Health so far of a live session.")] = False,
    now: NowOption = None,
):
    """Accuracy and pace decay across a session's quartiles."""
    if live:
        _run(ctx, lambda s: s.get_live_session_health(session_id, now=now))
    else:
        _run(ctx, lambda s: s.get_session_health_indicators(session_id, now=now))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    ctx: typer.Context,
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8777,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP analytics API."""
    import uvicorn

    # The server resolves its own config; hand it the global options via env
    overrides = (ctx.obj or {}).get("overrides", {})
    for key, value in overrides.items():
        if value is not None:
            os.environ[f"KAIROS_{key.upper()}"] = str(value)

    typer.secho(f"Kairos server listening on http://{host}:{port}", fg="green", err=True)
    uvicorn.run("kairos.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    overrides = (ctx.obj or {}).get("overrides", {})
    config = resolve_config(overrides)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))
