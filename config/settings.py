import os
from datetime import timedelta


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Market data backends, comma separated: "binance_rest", "binance_ws", "yahoo",
# "coingecko", or "mock".
MARKET_DATA_BACKEND = os.getenv("MARKET_DATA_BACKEND", "binance_rest")

# Symbols per backend.
BINANCE_SYMBOLS = _env_list(
    "BINANCE_SYMBOLS", "BTCUSDT,ETHUSDT,SOLUSDT,BNBUSDT,XRPUSDT,DOGEUSDT,PEPEUSDT"
)
YAHOO_SYMBOLS = _env_list("YAHOO_SYMBOLS", "AAPL,TSLA,NVDA,AMD,GME,AMC,PLTR,SOFI")
COINGECKO_IDS = _env_list("COINGECKO_IDS", "bitcoin,ethereum,solana,dogecoin")
COINGECKO_VS_CURRENCY = os.getenv("COINGECKO_VS_CURRENCY", "usd")
MOCK_SYMBOLS = _env_list("MOCK_SYMBOLS", "MOCKA,MOCKB,MOCKC")

# Provider endpoints.
BINANCE_REST_BASE_URL = "https://api.binance.com"
BINANCE_STREAM_BASE_URL = "wss://stream.binance.com:9443/stream"
YAHOO_CHART_BASE_URL = "https://query1.finance.yahoo.com"
COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
STREAM_RECONNECT_DELAY = timedelta(seconds=5)
STREAM_MAX_AGE = timedelta(seconds=30)

# Detection band (percent above the window low).
THRESHOLD_MIN = float(os.getenv("THRESHOLD_MIN", "9.0"))
THRESHOLD_MAX = float(os.getenv("THRESHOLD_MAX", "13.0"))
HYSTERESIS_DELTA = float(os.getenv("HYSTERESIS_DELTA", "0.5"))

# Sliding window and warm-up.
WINDOW_MS = int(os.getenv("WINDOW_MS", "120000"))
MIN_SAMPLES_FOR_SIGNAL = int(os.getenv("MIN_SAMPLES_FOR_SIGNAL", "3"))
RESET_WINDOW_ON_CLEAR = _env_bool("RESET_WINDOW_ON_CLEAR", False)

# Scan loop timing and fetch limits.
SCAN_INTERVAL_MS = int(os.getenv("SCAN_INTERVAL_MS", "10000"))
FETCH_CONCURRENCY = int(os.getenv("FETCH_CONCURRENCY", "10"))
FETCH_TIMEOUT_MS = int(os.getenv("FETCH_TIMEOUT_MS", "10000"))

# Per-subscriber buffered events before new ones are dropped.
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100"))
