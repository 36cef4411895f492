from enum import Enum

class Direction(Enum):
    CALL = "call"
    PUT = "put"

    @classmethod
    def parse(cls, value) -> "Direction":
        """Normalise buy/sell/call/put (any case) to a direction; anything else is PUT."""
        if isinstance(value, Direction):
            return value
        return cls.CALL if str(value or "").strip().lower() in ("buy", "call") else cls.PUT

    @property
    def label(self) -> str:
        return "BUY" if self is Direction.CALL else "SELL"

class AccountMode(Enum):
    REAL = "REAL"
    PRACTICE = "PRACTICE"

    @property
    def balance_type(self) -> int:
        """Discriminant used by the broker in profile/balances frames."""
        return 1 if self is AccountMode.REAL else 4

class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"

class TradeState(Enum):
    SIZING = "sizing"
    PLACING = "placing"
    PLACED = "placed"
    REJECTED = "rejected"
    OPEN = "open"
    CLOSED_WIN = "closed_win"
    CLOSED_LOSS = "closed_loss"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (TradeState.REJECTED, TradeState.CLOSED_WIN,
                        TradeState.CLOSED_LOSS, TradeState.TIMED_OUT)

class Outcome(Enum):
    WIN = "win"
    LOSS = "loss"

# Minimum stake per account currency (broker rules)
CURRENCY_MINIMUMS = {
    "NGN": 1500,
    "USD": 1,
    "EUR": 1,
    "GBP": 1,
    "BRL": 5,
    "INR": 70,
    "MXN": 20,
    "AED": 5,
    "ZAR": 20,
}

CURRENCY_SYMBOLS = {"NGN": "₦", "USD": "$", "EUR": "€", "GBP": "£", "BRL": "R$"}

def currency_symbol(currency: str | None) -> str:
    if not currency:
        return "$"
    return CURRENCY_SYMBOLS.get(currency.upper(), currency + " ")
