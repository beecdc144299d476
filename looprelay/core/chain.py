"""Ordered fallback over interchangeable strategies sharing one attempt() contract."""
import logging
from typing import Callable, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from looprelay.exceptions import ChainExhausted, StrategyError

logger = logging.getLogger(__name__)

S = TypeVar("S")
R = TypeVar("R")


class StrategyChain(Generic[S]):
    """Runs strategies in priority order and returns the first success.

    The chain does no retries of its own; each strategy handles those internally.
    StrategyError from a strategy moves on to the next one; any other exception
    propagates to the caller.
    """

    def __init__(
        self,
        strategies: Sequence[S],
        exhausted_error: Type[ChainExhausted] = ChainExhausted,
        label: str = "chain",
    ) -> None:
        self._strategies: List[S] = list(strategies)
        self._exhausted_error = exhausted_error
        self._label = label

    @property
    def strategies(self) -> List[S]:
        return list(self._strategies)

    def names(self) -> List[str]:
        return [getattr(s, "name", type(s).__name__) for s in self._strategies]

    def run(
        self,
        attempt: Callable[[S], R],
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> Tuple[S, R, List[StrategyError]]:
        """Call attempt(strategy) for each strategy until one returns.

        Returns (strategy, result, earlier failures). should_continue is checked
        before each attempt so a cancelled job does not start the next fallback.
        """
        failures: List[StrategyError] = []
        for strategy in self._strategies:
            if should_continue is not None and not should_continue():
                break
            name = getattr(strategy, "name", type(strategy).__name__)
            try:
                result = attempt(strategy)
            except StrategyError as e:
                logger.warning("%s: %s failed: %s", self._label, name, e.message)
                failures.append(e)
                continue
            if failures:
                logger.info("%s: %s succeeded after %d failure(s)", self._label, name, len(failures))
            return strategy, result, failures
        raise self._exhausted_error(failures)
