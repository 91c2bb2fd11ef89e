"""Unified CLI for ujuz-admission.

Provides three subcommands:
    ujuz-admission score  – score one facility / child query
    ujuz-admission mcp    – run the MCP server (stdio or SSE transport)
    ujuz-admission purge  – drop old evidence and expired cache entries
"""

import json
import logging

import click

from ujuz_admission import __version__
from ujuz_admission.models.admission import PriorityType


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version=__version__, prog_name="ujuz-admission")
def cli() -> None:
    """UJUz admission probability engine."""


@cli.command()
@click.argument("facility_id")
@click.option(
    "--age-band",
    "-a",
    type=click.IntRange(0, 5),
    required=True,
    help="Child age band (0-5).",
)
@click.option(
    "--position",
    "-p",
    type=click.IntRange(1, 500),
    default=None,
    help="Current waiting-list position.",
)
@click.option(
    "--priority",
    type=click.Choice([p.value for p in PriorityType]),
    default=PriorityType.general.value,
    show_default=True,
    help="Applicant priority type.",
)
@click.option("--text", is_flag=True, default=False, help="Print the Korean chat reply.")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
def score(
    facility_id: str,
    age_band: int,
    position: int | None,
    priority: str,
    text: bool,
    verbose: bool,
) -> None:
    """Score the admission outlook at FACILITY_ID for one child."""
    from ujuz_admission.errors import EvidenceStoreUnavailableError, FacilityNotFoundError
    from ujuz_admission.models.admission import AdmissionQuery
    from ujuz_admission.services.engine import build_default_engine

    _setup_logging(verbose)
    query = AdmissionQuery(
        facility_id=facility_id,
        child_age_band=age_band,
        waiting_position=position,
        priority_type=PriorityType(priority),
    )
    engine = build_default_engine()
    try:
        if text:
            click.echo(engine.bot_text(query))
        else:
            result = engine.score(query)
            click.echo(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
    except (FacilityNotFoundError, EvidenceStoreUnavailableError) as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.option(
    "--sse",
    is_flag=True,
    default=False,
    help="Use SSE transport instead of stdio.",
)
@click.option(
    "--port",
    default=8080,
    show_default=True,
    help="Port for SSE transport.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
def mcp(sse: bool, port: int, verbose: bool) -> None:
    """Run the MCP server."""
    from ujuz_admission.mcp_server import mcp as mcp_server

    _setup_logging(verbose)

    if sse:
        mcp_server.settings.port = port
        mcp_server.run(transport="sse")
    else:
        mcp_server.run(transport="stdio")


@cli.command()
@click.option(
    "--keep-days",
    type=click.IntRange(min=1),
    default=None,
    help="Evidence retention in days (default: the evidence window).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
def purge(keep_days: int | None, verbose: bool) -> None:
    """Delete evidence older than the retention window and expired cache entries."""
    from ujuz_admission.config import EngineSettings
    from ujuz_admission.services.evidence_store import SqliteEvidenceStore
    from ujuz_admission.services.result_cache import SqliteCacheStore

    _setup_logging(verbose)
    settings = EngineSettings()
    evidence = SqliteEvidenceStore(settings.evidence_db_path)
    cache = SqliteCacheStore(settings.cache_db_path)
    try:
        removed = evidence.purge_older_than(keep_days=keep_days or settings.evidence_window_days)
        expired = cache.purge_expired()
    finally:
        evidence.close()
        cache.close()
    click.echo(f"Removed {removed} observation(s) and {expired} expired cache entries.")
