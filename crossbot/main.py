"""CrossBot — application entry point.

Boots the FastAPI internal status server and provides the CLI entry point
that runs the trading loop.
"""

import logging

from fastapi import FastAPI

from crossbot.api.routers import router

app = FastAPI(title="CrossBot Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("crossbot")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and run the engine."""
    import argparse
    import asyncio
    import time

    from crossbot.api.routers import reset_state
    from crossbot.config import load_config

    parser = argparse.ArgumentParser(description="CrossBot golden-cross trader")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single decision cycle, print the status and exit",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Stop after this many cycles (default: run until interrupted)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the trading loop without the status API server",
    )
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if warn_if_live(config.exchange_environment):
        time.sleep(5)

    reset_state()
    logger.info(
        "Starting CrossBot (%s) on %s, %s candles every %ds",
        config.exchange_environment,
        ", ".join(config.symbols),
        config.candle_interval,
        config.poll_interval_seconds,
    )

    if args.once:
        asyncio.run(_run_once(config))
    else:
        asyncio.run(
            _run_engine(
                config,
                max_cycles=args.max_cycles,
                with_api=not args.engine_only,
            )
        )


def _build_engine(config):
    from crossbot.broker.exchange_client import ExchangeClient
    from crossbot.broker.market_data import BinanceMarketData
    from crossbot.engine import TradingEngine

    exchange = ExchangeClient(config)
    market_data = BinanceMarketData(config)
    return TradingEngine(config, market_data, exchange), exchange


async def _run_once(config) -> None:
    """Run one cycle and print the resulting status."""
    from crossbot.api.routers import get_bot_status
    from crossbot.cli.dashboard import print_status

    engine, exchange = _build_engine(config)
    try:
        result = await engine.run_once()
        logger.info("Cycle result: %s", result)
    finally:
        await exchange.close()
    print_status(get_bot_status())


async def _run_engine(config, max_cycles: int, with_api: bool) -> None:
    """Run the trading loop, optionally alongside the status API."""
    import asyncio
    import signal

    engine, exchange = _build_engine(config)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping after this cycle.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        if not with_api:
            await engine.run(max_cycles=max_cycles)
            return

        import uvicorn

        server = uvicorn.Server(
            uvicorn.Config(app, host="0.0.0.0", port=config.health_port, log_level="info")
        )

        # uvicorn takes over SIGINT while serving; whichever side finishes
        # first stops the other.
        async def _serve_then_stop_engine():
            try:
                await server.serve()
            finally:
                engine.stop()

        async def _run_engine_then_stop_server():
            try:
                await engine.run(max_cycles=max_cycles)
            finally:
                server.should_exit = True

        logger.info("Status API available at http://localhost:%d/status", config.health_port)
        results = await asyncio.gather(
            _serve_then_stop_engine(),
            _run_engine_then_stop_server(),
            return_exceptions=True,
        )
        logger.info("CrossBot stopped. Results: %s", [type(r).__name__ for r in results])
    finally:
        await exchange.close()


if __name__ == "__main__":
    _run_cli()
