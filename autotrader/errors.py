class TradingError(Exception):
    """Base for every failure surfaced by the broker client or the trade engine."""

class AuthError(TradingError):
    """Login rejected or identity endpoint unreachable. Never retried automatically."""

class NotConnected(TradingError):
    pass

class BalanceNotReady(TradingError):
    def __init__(self, message: str = "Balance not ready"):
        super().__init__(message)

class PlacementRejected(TradingError):
    """Broker refused the option; `reason` is the broker's text, verbatim."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

class RequestTimeout(TradingError):
    def __init__(self, what: str, timeout: float):
        super().__init__(f"Timeout waiting for {what} ({timeout:g}s)")
        self.what = what
        self.timeout = timeout

class InsufficientBalance(TradingError):
    def __init__(self, needed: float, available: float, currency: str):
        super().__init__(
            f"Insufficient balance. Need {currency} {needed:,.2f}, have {currency} {available:,.2f}"
        )
        self.needed = needed
        self.available = available
        self.currency = currency

class InvalidSignal(TradingError, ValueError):
    pass
