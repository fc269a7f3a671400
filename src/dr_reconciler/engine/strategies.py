"""Ordered fallback strategies: the first one that yields a value wins."""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TypeVar

from dr_reconciler.utils.errors import CommandError, NetworkError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass
class Strategy:
    """A named way of producing a value; returns None when it does not apply."""
    name: str
    func: Callable[..., Optional[Any]]

    def __call__(self, *args, **kwargs):
        return self.func(*args, **kwargs)


def first_success(strategies: Sequence[Callable[..., Optional[T]]], *args, **kwargs) -> Optional[T]:
    """Try strategies in order and return the first non-None result.

    Strategies that fail with a network or command error are skipped so that
    a later strategy still gets a chance. Terminal errors (credentials,
    permissions) and cancellation propagate.

    Args:
        strategies: Callables tried in order
        *args: Positional arguments passed to every strategy
        **kwargs: Keyword arguments passed to every strategy

    Returns:
        First non-None value, or None when no strategy produced one
    """
    for strategy in strategies:
        name = getattr(strategy, 'name', getattr(strategy, '__name__', repr(strategy)))
        try:
            value = strategy(*args, **kwargs)
        except (NetworkError, CommandError) as e:
            logger.debug(f"Strategy {name} failed: {e.message}")
            continue
        if value is not None:
            logger.debug(f"Strategy {name} succeeded")
            return value
        logger.debug(f"Strategy {name} found nothing")
    return None
