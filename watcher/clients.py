from __future__ import annotations

import json
import math
import logging
import random
import socket
import threading
from typing import Dict, Iterable, List, Optional, Protocol
from urllib import error, parse, request

import websocket

from config import settings
from watcher.errors import FetchError
from watcher.models import PriceSample, now_ms

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (momentum-scanner)"


class PriceFetcher(Protocol):
    name: str

    def symbols(self) -> List[str]:
        ...

    def fetch(self, symbol: str, timeout: float) -> PriceSample:
        ...


def _http_get_json(url: str, symbol: str, timeout: float) -> object:
    req = request.Request(url, headers={"User-Agent": USER_AGENT, "Accept": "application/json"})
    try:
        with request.urlopen(req, timeout=timeout) as response:
            body = response.read().decode("utf-8")
    except error.HTTPError as exc:
        raise FetchError(symbol, f"HTTP {exc.code} from {url}") from exc
    except error.URLError as exc:
        raise FetchError(symbol, f"request failed: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise FetchError(symbol, f"timed out after {timeout:.1f}s") from exc

    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise FetchError(symbol, "response is not valid JSON") from exc


def _positive_float(value: object, symbol: str, field: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise FetchError(symbol, f"malformed {field}: {value!r}") from None
    if number <= 0:
        raise FetchError(symbol, f"non-positive {field}: {value!r}")
    return number


def _optional_float(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class MockPriceFetcher:
    """Random-walk prices for demos and tests."""

    name = "mock"

    def __init__(
        self,
        symbols: Iterable[str],
        *,
        start_price: float = 100.0,
        max_step: float = 0.03,
        seed: Optional[int] = None,
    ):
        self._symbols = list(symbols)
        self._max_step = max_step
        self._random = random.Random(seed)
        self._prices = {symbol: start_price for symbol in self._symbols}
        self._volumes = {symbol: 1000.0 for symbol in self._symbols}
        self._lock = threading.Lock()

    def symbols(self) -> List[str]:
        return list(self._symbols)

    def fetch(self, symbol: str, timeout: float) -> PriceSample:
        with self._lock:
            if symbol not in self._prices:
                raise FetchError(symbol, "unknown mock symbol")
            self._prices[symbol] *= 1 + self._random.uniform(-self._max_step, self._max_step)
            self._volumes[symbol] *= 1 + self._random.uniform(-0.3, 0.3)
            price = round(self._prices[symbol], 6)
            volume = max(round(self._volumes[symbol], 2), 1.0)
        return PriceSample(
            symbol=symbol, price=price, timestamp=now_ms(), volume=volume, source=self.name
        )


class BinanceRestFetcher:
    name = "binance_rest"

    def __init__(self, symbols: Iterable[str], *, base_url: str):
        self._symbols = [symbol.upper() for symbol in symbols]
        self._base_url = base_url.rstrip("/")

    def symbols(self) -> List[str]:
        return list(self._symbols)

    def fetch(self, symbol: str, timeout: float) -> PriceSample:
        endpoint = f"{self._base_url}/api/v3/ticker/24hr?symbol={parse.quote(symbol.upper())}"
        payload = _http_get_json(endpoint, symbol, timeout)
        if not isinstance(payload, dict):
            raise FetchError(symbol, "unexpected ticker payload")
        return PriceSample(
            symbol=symbol,
            price=_positive_float(payload.get("lastPrice"), symbol, "lastPrice"),
            timestamp=now_ms(),
            volume=_optional_float(payload.get("volume")),
            source=self.name,
            asset_type="crypto",
            day_change_percent=_optional_float(payload.get("priceChangePercent")),
        )


class YahooChartFetcher:
    name = "yahoo"

    def __init__(self, symbols: Iterable[str], *, base_url: str):
        self._symbols = [symbol.upper() for symbol in symbols]
        self._base_url = base_url.rstrip("/")

    def symbols(self) -> List[str]:
        return list(self._symbols)

    def fetch(self, symbol: str, timeout: float) -> PriceSample:
        endpoint = (
            f"{self._base_url}/v8/finance/chart/{parse.quote(symbol)}?interval=1m&range=1d"
        )
        payload = _http_get_json(endpoint, symbol, timeout)
        try:
            meta = payload["chart"]["result"][0]["meta"]  # type: ignore[index]
        except (KeyError, IndexError, TypeError) as exc:
            raise FetchError(symbol, "chart payload has no result") from exc
        if not isinstance(meta, dict):
            raise FetchError(symbol, "chart payload has no result")
        price = _positive_float(meta.get("regularMarketPrice"), symbol, "regularMarketPrice")
        day_change = _optional_float(meta.get("regularMarketChangePercent"))
        previous_close = _optional_float(meta.get("chartPreviousClose"))
        if day_change is None and previous_close:
            day_change = (price - previous_close) / previous_close * 100
        name = meta.get("shortName") or meta.get("longName")
        return PriceSample(
            symbol=symbol,
            price=price,
            timestamp=now_ms(),
            volume=_optional_float(meta.get("regularMarketVolume")),
            source=self.name,
            # Yahoo quotes crypto pairs as BTC-USD
            asset_type="crypto" if symbol.upper().endswith("-USD") else "stock",
            name=name if isinstance(name, str) else None,
            day_change_percent=day_change,
        )


class CoinGeckoFetcher:
    name = "coingecko"

    def __init__(self, coin_ids: Iterable[str], *, base_url: str, vs_currency: str = "usd"):
        self._coin_ids = [coin_id.lower() for coin_id in coin_ids]
        self._base_url = base_url.rstrip("/")
        self._vs_currency = vs_currency.lower()

    def symbols(self) -> List[str]:
        return list(self._coin_ids)

    def fetch(self, symbol: str, timeout: float) -> PriceSample:
        query = parse.urlencode(
            {
                "ids": symbol,
                "vs_currencies": self._vs_currency,
                "include_24hr_vol": "true",
                "include_24hr_change": "true",
            }
        )
        payload = _http_get_json(f"{self._base_url}/simple/price?{query}", symbol, timeout)
        row = payload.get(symbol) if isinstance(payload, dict) else None
        if not isinstance(row, dict):
            raise FetchError(symbol, "coin missing from response")
        return PriceSample(
            symbol=symbol,
            price=_positive_float(row.get(self._vs_currency), symbol, self._vs_currency),
            timestamp=now_ms(),
            volume=_optional_float(row.get(f"{self._vs_currency}_24h_vol")),
            source=self.name,
            asset_type="crypto",
            day_change_percent=_optional_float(row.get(f"{self._vs_currency}_24h_change")),
        )


class BinanceStreamFetcher:
    """Serves the latest ticker seen on Binance's combined WebSocket stream.

    A background thread keeps the socket open and reconnects after drops;
    ``fetch`` never touches the network.
    """

    name = "binance_ws"

    def __init__(
        self,
        symbols: Iterable[str],
        *,
        stream_base_url: str,
        reconnect_delay_seconds: float,
        max_age_ms: int = 30_000,
    ):
        self._symbols = [symbol.upper() for symbol in symbols]
        self._stream_base_url = stream_base_url.rstrip("/")
        self._reconnect_delay = reconnect_delay_seconds
        self._max_age_ms = max_age_ms
        self._latest: Dict[str, PriceSample] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._ws: Optional[websocket.WebSocketApp] = None

    def symbols(self) -> List[str]:
        return list(self._symbols)

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="binance-stream", daemon=True)
        self._worker.start()

    def close(self) -> None:
        self._stop.set()
        if self._ws is not None:
            self._ws.close()
        if self._worker is not None:
            self._worker.join(timeout=2)
        self._worker = None

    def fetch(self, symbol: str, timeout: float) -> PriceSample:
        with self._lock:
            sample = self._latest.get(symbol.upper())
        if sample is None:
            raise FetchError(symbol, "no ticker received yet")
        age = now_ms() - sample.timestamp
        if age > self._max_age_ms:
            raise FetchError(symbol, f"latest ticker is stale ({age} ms old)")
        return sample

    def handle_message(self, message: str) -> None:
        try:
            payload = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Unable to decode WebSocket payload: %s", message)
            return

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data and isinstance(payload, dict):
            data = payload  # direct stream (single subscription)
        if not isinstance(data, dict):
            return

        symbol = data.get("s")
        price = data.get("c") or data.get("p")
        if not symbol or price is None:
            return
        event_time = data.get("E")
        try:
            sample = PriceSample(
                symbol=str(symbol).upper(),
                price=float(price),
                timestamp=int(event_time) if event_time else now_ms(),
                volume=_optional_float(data.get("v")),
                source=self.name,
                asset_type="crypto",
                day_change_percent=_optional_float(data.get("P")),
            )
        except (TypeError, ValueError):
            logger.debug("Skipping malformed ticker: %s", data)
            return

        with self._lock:
            self._latest[sample.symbol] = sample

    def _run(self) -> None:
        stream = "/".join(f"{symbol.lower()}@ticker" for symbol in self._symbols)
        url = f"{self._stream_base_url}?streams={stream}"

        def on_message(_: object, message: str) -> None:
            self.handle_message(message)

        def on_error(_: object, exc: Exception) -> None:
            logger.warning("WebSocket error: %s", exc)

        while not self._stop.is_set():
            self._ws = websocket.WebSocketApp(url, on_message=on_message, on_error=on_error)
            self._ws.run_forever()
            if self._stop.is_set():
                break
            logger.info("WebSocket disconnected; retrying in %.1fs", self._reconnect_delay)
            self._stop.wait(self._reconnect_delay)


def build_default_fetchers(backends: Optional[str] = None) -> List[PriceFetcher]:
    """One fetcher per comma-separated backend name; mock when none is usable."""
    names = [name.strip().lower() for name in (backends or settings.MARKET_DATA_BACKEND).split(",")]
    fetchers: List[PriceFetcher] = []

    for name in filter(None, names):
        if name == "binance_rest":
            fetchers.append(
                BinanceRestFetcher(settings.BINANCE_SYMBOLS, base_url=settings.BINANCE_REST_BASE_URL)
            )
        elif name == "binance_ws":
            fetchers.append(
                BinanceStreamFetcher(
                    settings.BINANCE_SYMBOLS,
                    stream_base_url=settings.BINANCE_STREAM_BASE_URL,
                    reconnect_delay_seconds=settings.STREAM_RECONNECT_DELAY.total_seconds(),
                    max_age_ms=int(settings.STREAM_MAX_AGE.total_seconds() * 1000),
                )
            )
        elif name == "yahoo":
            fetchers.append(
                YahooChartFetcher(settings.YAHOO_SYMBOLS, base_url=settings.YAHOO_CHART_BASE_URL)
            )
        elif name == "coingecko":
            fetchers.append(
                CoinGeckoFetcher(
                    settings.COINGECKO_IDS,
                    base_url=settings.COINGECKO_BASE_URL,
                    vs_currency=settings.COINGECKO_VS_CURRENCY,
                )
            )
        elif name == "mock":
            fetchers.append(MockPriceFetcher(settings.MOCK_SYMBOLS))
        else:
            logger.warning("Unknown market data backend '%s'; skipping.", name)

    if not fetchers:
        logger.info("Using mock market data backend.")
        fetchers.append(MockPriceFetcher(settings.MOCK_SYMBOLS))
    return fetchers
