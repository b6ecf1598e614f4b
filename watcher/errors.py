"""Error types raised by the momentum watcher."""


class InvalidSample(ValueError):
    """A price sample that cannot be recorded (bad price, timestamp or order)."""


class FetchError(RuntimeError):
    """A data source failed to produce a sample for one symbol."""

    def __init__(self, symbol: str, reason: str):
        super().__init__(f"{symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason
