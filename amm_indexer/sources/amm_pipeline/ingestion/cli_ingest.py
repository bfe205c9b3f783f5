import json
import logging

import typer

from amm_indexer.sources.amm_pipeline.config.settings import (
    AMM_FACTORY_ADDRESS,
    AMM_RPC_URL,
    DEFAULT_BATCH_DELAY_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHUNK_DELAY_MS,
    DEFAULT_CHUNK_SIZE,
)
from amm_indexer.sources.amm_pipeline.evm.utils.client import get_web3_client
from amm_indexer.sources.amm_pipeline.evm.utils.orchestrator import (
    BackfillRequest,
    run_event_backfill,
    run_pair_discovery,
    run_snapshots,
)
from amm_indexer.sources.amm_pipeline.evm.utils.rate_limit import DiscoveryPolicy
from amm_indexer.sources.amm_pipeline.utils.sync_runs import recent_runs, run_stats
from amm_indexer.storage.db import get_engine, get_session_factory
from amm_indexer.storage.db_utils import create_tables
from amm_indexer.utils.shortname import ShortNameFilter

log = logging.getLogger(__name__)

app = typer.Typer(help="Run AMM indexing jobs from the CLI")


def _session(worker: bool):
    create_tables(get_engine(worker=worker))
    return get_session_factory(worker=worker)()


def backfill_events_job(
    from_block: int | None = None,
    to_block: int | None = None,
    hours_ago: float | None = None,
    pair_address: str | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    delay_ms: int = DEFAULT_CHUNK_DELAY_MS,
    source: str = "cli",
    worker: bool = False,
) -> dict:
    request = BackfillRequest(
        from_block=from_block,
        to_block=to_block,
        hours_ago=hours_ago,
        pair_address=pair_address,
        chunk_size=chunk_size,
        delay_ms=delay_ms,
        source=source,
    )
    request.validate()
    with _session(worker) as db:
        return run_event_backfill(db, get_web3_client(AMM_RPC_URL), request, rpc_url=AMM_RPC_URL)


def discover_pairs_job(
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_ms: int = DEFAULT_BATCH_DELAY_MS,
    source: str = "cli",
    worker: bool = False,
) -> dict:
    policy = DiscoveryPolicy(batch_size=batch_size, delay_ms=delay_ms)
    with _session(worker) as db:
        return run_pair_discovery(db, get_web3_client(AMM_RPC_URL), AMM_FACTORY_ADDRESS, policy,
                                  source=f"amm-pairs-{source}")


def snapshots_job(source: str = "cli", worker: bool = False) -> dict:
    with _session(worker) as db:
        return run_snapshots(db, source=source)


def _echo(result: dict) -> None:
    typer.echo(json.dumps(result, indent=2, default=str))


@app.callback()
def configure_logging():
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")
    logging.getLogger().addFilter(ShortNameFilter())


@app.command("backfill-events")
def backfill_events(
    from_block: int = typer.Option(None, help="First block (default: hours-ago window)"),
    to_block: int = typer.Option(None, help="Last block (default: latest)"),
    hours_ago: float = typer.Option(None, help="Window size when no from-block is given (default 1)"),
    pair_address: str = typer.Option(None, help="0x... restrict to one pair"),
    chunk_size: int = typer.Option(DEFAULT_CHUNK_SIZE, help="Blocks per eth_getLogs call"),
    delay_ms: int = typer.Option(DEFAULT_CHUNK_DELAY_MS, help="Pause between chunks"),
):
    """Fetch and project AMM events over a block range."""
    try:
        _echo(backfill_events_job(from_block, to_block, hours_ago, pair_address, chunk_size, delay_ms))
    except Exception:
        log.error("[cli] AMM backfill failed", exc_info=True)
        raise typer.Exit(code=1)


@app.command("discover-pairs")
def discover_pairs(
    batch_size: int = typer.Option(DEFAULT_BATCH_SIZE, help="Pairs per batch"),
    delay_ms: int = typer.Option(DEFAULT_BATCH_DELAY_MS, help="Pause between batches"),
):
    """Walk the factory's pair list and upsert every pair's current state."""
    try:
        _echo(discover_pairs_job(batch_size, delay_ms))
    except Exception:
        log.error("[cli] Pair discovery failed", exc_info=True)
        raise typer.Exit(code=1)


@app.command("snapshots")
def snapshots():
    """Compute this hour's analytics snapshot for every pair."""
    try:
        _echo(snapshots_job())
    except Exception:
        log.error("[cli] Snapshot run failed", exc_info=True)
        raise typer.Exit(code=1)


@app.command("runs")
def runs(
    stats: bool = typer.Option(False, "--stats", help="Show aggregate stats instead of a list"),
    limit: int = typer.Option(20, help="Runs to list"),
):
    """Show recent sync runs."""
    with _session(False) as db:
        _echo(run_stats(db) if stats else {"runs": recent_runs(db, limit=limit)})


def main():
    app()


if __name__ == "__main__":
    main()
