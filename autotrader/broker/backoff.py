from typing import Protocol

class BackoffPolicy(Protocol):
    def next_delay(self, attempt: int) -> float: ...

class FixedBackoff:
    """Same delay before every reconnect attempt; no cap on attempts."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay

    def next_delay(self, attempt: int) -> float:
        return self.delay
