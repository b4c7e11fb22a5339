"""
Ordered fallback chain.

A chain is a list of named, independent strategies tried in order until one
produces an accepted result. Every rejected or failing strategy is recorded
as a StrategyAttempt so the caller can report exactly what was tried.

Used by:
  - document_text        (pdfplumber -> pypdf -> pymupdf)
  - attachment_extractor (structured fetch -> raw scan, and the raw-scan
                          sub-strategies boundary-split -> filename-regex)
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from app.models.document import StrategyAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Returns None when the value is acceptable, otherwise the rejection reason.
Acceptor = Callable[[Any], Optional[str]]


def accept_non_empty(value: Any) -> Optional[str]:
    """Default acceptor: reject None, empty, and whitespace-only results."""
    if value is None:
        return "no result"
    if isinstance(value, (str, bytes)) and not value.strip():
        return "empty result"
    if not value:
        return "empty result"
    return None


class ChainExhausted(Exception):
    """Raised when every strategy in a chain failed or was rejected."""

    def __init__(self, chain: str, attempts: list[StrategyAttempt]) -> None:
        self.chain = chain
        self.attempts = attempts
        detail = "; ".join(f"{a.strategy}: {a.reason}" for a in attempts)
        super().__init__(f"{chain}: all strategies failed ({detail})")


@dataclass
class ChainResult(Generic[T]):
    value: T
    strategy: str
    failures: list[StrategyAttempt] = field(default_factory=list)


class FallbackChain(Generic[T]):
    """
    Try ``strategies`` in order and return the first accepted result.

    Args:
        name:       Label used in logs and in ChainExhausted.
        strategies: (name, callable) pairs. Every callable receives the same
                    positional/keyword arguments passed to run()/arun().
        accept:     Acceptor applied to each result (default: non-empty).
    """

    def __init__(
        self,
        name: str,
        strategies: Sequence[tuple[str, Callable[..., Any]]],
        accept: Acceptor = accept_non_empty,
    ) -> None:
        self.name = name
        self.strategies = list(strategies)
        self.accept = accept

    def _record(self, attempts: list[StrategyAttempt], strategy: str, reason: str) -> None:
        logger.info(f"{self.name}: strategy {strategy!r} failed: {reason}")
        attempts.append(StrategyAttempt(strategy=strategy, reason=reason))

    def _record_error(self, attempts: list[StrategyAttempt], strategy: str, exc: Exception) -> None:
        # A nested chain contributes its own attempts, prefixed with ours.
        if isinstance(exc, ChainExhausted) and exc.attempts:
            for inner in exc.attempts:
                self._record(attempts, f"{strategy}/{inner.strategy}", inner.reason)
            return
        self._record(attempts, strategy, f"{type(exc).__name__}: {str(exc) or type(exc).__name__}")

    def _accepted(self, attempts, strategy: str, value: Any) -> bool:
        rejection = self.accept(value)
        if rejection is not None:
            self._record(attempts, strategy, rejection)
            return False
        logger.info(f"{self.name}: strategy {strategy!r} succeeded")
        return True

    def run(self, *args: Any, **kwargs: Any) -> ChainResult[T]:
        attempts: list[StrategyAttempt] = []
        for strategy, func in self.strategies:
            try:
                value = func(*args, **kwargs)
            except Exception as exc:
                self._record_error(attempts, strategy, exc)
                continue
            if self._accepted(attempts, strategy, value):
                return ChainResult(value=value, strategy=strategy, failures=attempts)
        raise ChainExhausted(self.name, attempts)

    async def arun(self, *args: Any, **kwargs: Any) -> ChainResult[T]:
        """Async variant of run(); strategies may be coroutine functions."""
        attempts: list[StrategyAttempt] = []
        for strategy, func in self.strategies:
            try:
                value = func(*args, **kwargs)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as exc:
                self._record_error(attempts, strategy, exc)
                continue
            if self._accepted(attempts, strategy, value):
                return ChainResult(value=value, strategy=strategy, failures=attempts)
        raise ChainExhausted(self.name, attempts)

