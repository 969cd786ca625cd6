"""Binance spot klines async client.

Fetches candlestick data from the public ``/api/v3/klines`` endpoint.
No credentials are needed for market data.
"""

import asyncio
import logging
from typing import Optional

import httpx

from crossbot.broker.errors import DataUnavailableError
from crossbot.broker.models import Candle
from crossbot.config import Config

logger = logging.getLogger("crossbot")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429, 418}
_MAX_RETRY_AFTER = 30.0  # seconds; longer rate-limit bans fail the fetch


def exchange_symbol(symbol: str) -> str:
    """``"BTC/USDT"`` → ``"BTCUSDT"``."""
    return symbol.replace("/", "").upper()


def _retry_delay(resp: httpx.Response, attempt: int) -> float:
    delay = _RETRY_BASE_DELAY * (2 ** attempt)
    try:
        return max(delay, float(resp.headers.get("Retry-After", 0)))
    except ValueError:
        return delay


class BinanceMarketData:
    """Async client for Binance spot candle data."""

    def __init__(self, config: Config) -> None:
        self._base_url = config.market_data_base_url
        self._timeout = config.request_timeout_seconds

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Binance answers 429 when the request weight limit is exceeded and
        418 once an IP keeps calling after a 429 (an automatic ban). Both
        carry a ``Retry-After`` header in seconds; the wait before the next
        attempt is the larger of that and the backoff delay, and a ban
        longer than ``_MAX_RETRY_AFTER`` is not waited out at all. Gateway
        errors (502, 503, 504) and transport errors use the plain backoff.
        Other errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        timeout=self._timeout,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    last_exc = httpx.HTTPStatusError(
                        f"Binance returned '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    delay = _retry_delay(resp, attempt)
                    if delay > _MAX_RETRY_AFTER:
                        logger.error(
                            "Binance %s %s returned %d, retry-after %.0fs — giving up",
                            method.upper(), url, resp.status_code, delay,
                        )
                        raise last_exc
                    logger.warning(
                        "Binance %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    if attempt + 1 < _MAX_RETRIES:
                        await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                if attempt + 1 < _MAX_RETRIES:
                    await asyncio.sleep(delay)

        # All retries exhausted — raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 100,
    ) -> list[Candle]:
        """Fetch candlestick data from Binance.

        Args:
            symbol: e.g. ``"BTC/USDT"``
            interval: e.g. ``"15m"``, ``"1h"``
            limit: number of candles to request (max 1000)

        Returns:
            List of ``Candle`` objects ordered oldest-first.

        Raises:
            DataUnavailableError: on network, HTTP or payload errors.
        """
        url = f"{self._base_url}/api/v3/klines"
        params = {
            "symbol": exchange_symbol(symbol),
            "interval": interval,
            "limit": limit,
        }

        try:
            resp = await self._request_with_retry("get", url, params=params)
        except httpx.HTTPError as exc:
            raise DataUnavailableError(
                f"Candle fetch failed for {symbol}: {exc}"
            ) from exc

        try:
            return [
                Candle(
                    time=int(k[0]),
                    open=float(k[1]),
                    high=float(k[2]),
                    low=float(k[3]),
                    close=float(k[4]),
                    volume=float(k[5]),
                )
                for k in resp.json()
            ]
        except (ValueError, TypeError, IndexError, KeyError) as exc:
            raise DataUnavailableError(
                f"Malformed candle payload for {symbol}: {exc}"
            ) from exc
