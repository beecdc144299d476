"""Relay error taxonomy: strategy failures, chain exhaustion, control conflicts."""
from typing import List, Optional


class RelayError(Exception):
    """Base exception for all relay errors."""


class StrategyError(RelayError):
    """One strategy failed for one playlist item."""

    def __init__(self, strategy: str, message: str) -> None:
        super().__init__(f"{strategy}: {message}")
        self.strategy = strategy
        self.message = message


class TransportTimeout(StrategyError):
    """Transport ran past its duration-derived upper bound and was killed."""


class ChainExhausted(RelayError):
    """Every strategy in a chain failed; carries each attempt's error."""

    def __init__(self, attempts: Optional[List[StrategyError]] = None) -> None:
        self.attempts: List[StrategyError] = list(attempts or [])
        self.exhausted = True
        detail = "; ".join(str(a) for a in self.attempts) or "no strategies configured"
        super().__init__(f"all strategies failed ({detail})")


class AcquisitionError(ChainExhausted):
    """No acquisition strategy produced playable content."""


class TransportError(ChainExhausted):
    """No transport strategy delivered the content to the sink."""


class TransportCancelled(RelayError):
    """Delivery was cancelled by stop/skip (not an error for loop progression)."""


class CleanupError(RelayError):
    """Staged content could not be removed. Logged, never propagated."""


class ConcurrencyConflict(RelayError):
    """A control command does not apply to the current run state."""


class AlreadyRunning(ConcurrencyConflict):
    def __init__(self) -> None:
        super().__init__("already running")


class AlreadyStopped(ConcurrencyConflict):
    def __init__(self) -> None:
        super().__init__("already stopped")


class InvariantViolation(RelayError):
    """Shared relay state is inconsistent (programming defect)."""
