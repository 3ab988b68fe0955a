"""Royalty Sweeper - CLI.

Sweeps CVN-1 royalty escrows into the NFT core vault, signed by one gas account.
"""

import asyncio
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer

from royalty_sweeper.bridges.ledger import CedraLedgerClient
from royalty_sweeper.core.config import Settings, apply_overrides
from royalty_sweeper.core.exceptions import ConfigError, SweeperError
from royalty_sweeper.core.logging_config import configure_logging
from royalty_sweeper.core.types import parse_address
from royalty_sweeper.models.schemas import EscrowKey
from royalty_sweeper.services.gas_account import GasAccount
from royalty_sweeper.services.scheduler import SweepScheduler
from royalty_sweeper.services.submission import SubmissionStateMachine
from royalty_sweeper.services.watchlist import build_watchlist

logger = logging.getLogger("royalty_sweeper")

app = typer.Typer(help="Sweeps CVN-1 royalties into creator payout + NFT core vault")

EXIT_FAILURE = 1
EXIT_CONFIG = 2


@app.callback()
def main(
    ctx: typer.Context,
    node_url: Optional[str] = typer.Option(None, "--node-url", help="Node REST URL [env: CEDRA_NODE_URL]"),
    private_key: Optional[str] = typer.Option(None, "--private-key", help="Gas account key [env: CEDRA_PRIVATE_KEY]"),
    cvn1_address: Optional[str] = typer.Option(None, "--cvn1-address", help="Module address [env: CVN1_ADDRESS]"),
    timeout_secs: Optional[int] = typer.Option(None, "--timeout-secs", help="Transaction expiration, seconds from now"),
    max_gas_amount: Optional[int] = typer.Option(None, "--max-gas-amount"),
    gas_unit_price: Optional[int] = typer.Option(None, "--gas-unit-price"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
):
    overrides = {
        "CEDRA_NODE_URL": node_url,
        "CEDRA_PRIVATE_KEY": private_key,
        "CVN1_ADDRESS": cvn1_address,
        "TIMEOUT_SECS": timeout_secs,
        "MAX_GAS_AMOUNT": max_gas_amount,
        "GAS_UNIT_PRICE": gas_unit_price,
        "LOG_LEVEL": log_level,
    }
    with _exit_codes():
        settings = apply_overrides(None, overrides)
    try:
        configure_logging(settings.LOG_LEVEL)
    except ValueError:
        raise typer.BadParameter(f"unknown log level {settings.LOG_LEVEL!r}", param_hint="--log-level")
    ctx.obj = settings


@app.command("sweep-once")
def sweep_once(
    ctx: typer.Context,
    nft: str = typer.Option(..., "--nft", help="NFT object address"),
    fa_metadata: str = typer.Option(..., "--fa-metadata", help="Fungible asset metadata address"),
    force: bool = typer.Option(False, "--force", help="Submit sweep tx even if the view reports 0 balance"),
):
    """Sweep a single NFT once."""
    _run(_sweep_once(ctx.obj, nft, fa_metadata, force))


@app.command()
def watch(
    ctx: typer.Context,
    nft: Optional[List[str]] = typer.Option(None, "--nft", help="NFT address (repeatable)"),
    nfts_file: Optional[Path] = typer.Option(
        None, "--nfts-file", help="File with NFT addresses, one per line, '#' comments ok"
    ),
    fa_metadata: str = typer.Option(..., "--fa-metadata", help="Fungible asset metadata address"),
    interval_secs: Optional[float] = typer.Option(None, "--interval-secs", help="Seconds between polls"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Maximum NFTs to sweep per transaction"),
):
    """Poll escrows and sweep when balance is non-zero."""
    overrides = {"INTERVAL_SECS": interval_secs, "BATCH_SIZE": batch_size}
    with _exit_codes():
        settings = apply_overrides(ctx.obj, overrides)
    _run(_watch(settings, nft or [], nfts_file, fa_metadata))


def _run(coro) -> None:
    with _exit_codes():
        asyncio.run(coro)


@contextmanager
def _exit_codes():
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(code=EXIT_CONFIG)
    except SweeperError as e:
        logger.error(f"{type(e).__name__}: {e}")
        raise typer.Exit(code=EXIT_FAILURE)


# =============================================================================
# STARTUP
# =============================================================================

async def _connect(settings: Settings) -> tuple[CedraLedgerClient, SubmissionStateMachine]:
    """Fatal on any failure: bad key material, bad module address, unreachable node."""
    if not settings.CEDRA_PRIVATE_KEY:
        raise ConfigError("CEDRA_PRIVATE_KEY is required")
    if not settings.CVN1_ADDRESS:
        raise ConfigError("CVN1_ADDRESS is required")
    try:
        module_address = parse_address(settings.CVN1_ADDRESS)
    except ValueError as e:
        raise ConfigError(f"invalid CVN1_ADDRESS: {e}")

    account = GasAccount.from_private_key(settings.CEDRA_PRIVATE_KEY, settings.CEDRA_ACCOUNT_ADDRESS)
    ledger = CedraLedgerClient(
        node_url=settings.CEDRA_NODE_URL,
        module_address=module_address,
        http_timeout=settings.HTTP_TIMEOUT_SECS,
    )
    try:
        chain_id = await ledger.get_chain_id()
        machine = SubmissionStateMachine(
            ledger,
            account,
            timeout_secs=settings.TIMEOUT_SECS,
            max_gas_amount=settings.MAX_GAS_AMOUNT,
            gas_unit_price=settings.GAS_UNIT_PRICE,
        )
        sequence_number = await machine.sync_sequence()
    except BaseException:
        await ledger.aclose()
        raise

    logger.info(
        f"[LEDGER] Connected to {ledger.base_url} chain_id={chain_id} "
        f"gas_account={account.address} sequence_number={sequence_number}"
    )
    return ledger, machine


async def _sweep_once(settings: Settings, nft: str, fa_metadata: str, force: bool) -> None:
    try:
        key = EscrowKey(nft, fa_metadata)
    except ValueError as e:
        raise ConfigError(str(e))

    ledger, machine = await _connect(settings)
    async with ledger:
        outcome = await machine.sweep_one(key, force=force)
    if not outcome.submitted:
        logger.info(f"Nothing to sweep for {key} (balance 0, use --force to submit anyway)")


async def _watch(settings: Settings, nfts: List[str], nfts_file: Optional[Path], fa_metadata: str) -> None:
    watchlist = build_watchlist(nfts, fa_metadata, file_path=nfts_file)

    ledger, machine = await _connect(settings)
    async with ledger:
        scheduler = SweepScheduler(
            machine,
            ledger,
            watchlist,
            interval_secs=settings.INTERVAL_SECS,
            max_batch_size=settings.BATCH_SIZE,
            max_concurrent_queries=settings.MAX_CONCURRENT_QUERIES,
            recheck_before_batch=settings.RECHECK_BEFORE_BATCH,
        )
        _install_signal_handlers(scheduler)
        await scheduler.run()


def _install_signal_handlers(scheduler: SweepScheduler) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_stop)
        except (NotImplementedError, RuntimeError):
            # event loops without signal support (Windows, non-main thread)
            logger.debug(f"Signal handler for {sig.name} not installed")


if __name__ == "__main__":
    app()
