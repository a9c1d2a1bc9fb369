from __future__ import annotations

import time
import typing
from dataclasses import dataclass, field

from layerkit.exceptions.system import RetriesExhaustedError
from layerkit.loggers import logger

T = typing.TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy(object):
    """
    Bounded retries with exponential backoff, for registry pull and push.

    The delay starts at ``initial_delay`` seconds, doubles after each failed attempt and never exceeds
    ``max_delay``. Local filesystem and daemon operations are not wrapped: they fail fast.

    .. code-block:: python

        RetryPolicy(max_attempts=3, initial_delay=1, max_delay=30).execute(
            lambda: client.push(archive, tag),
            on_retry_error=lambda e: logger.warning(f"Push failed, retrying: {e}"),
        )
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    retry_on: typing.Tuple[typing.Type[BaseException], ...] = (Exception,)
    sleep: typing.Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1 based)."""
        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)

    def execute(
        self,
        operation: typing.Callable[[], T],
        on_retry_error: typing.Optional[typing.Callable[[Exception], None]] = None,
    ) -> T:
        """
        Runs ``operation`` until it succeeds or ``max_attempts`` is reached.

        :param operation: the fallible operation
        :param on_retry_error: called with the failure of every attempt that is going to be retried
        :raises RetriesExhaustedError: chained to the failure of the last attempt
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except self.retry_on as e:
                if attempt == self.max_attempts:
                    raise RetriesExhaustedError(attempt, e) from e
                if on_retry_error is not None:
                    on_retry_error(e)
                delay = self.delay_for(attempt)
                logger.debug(f"Attempt {attempt}/{self.max_attempts} failed, retrying in {delay:.1f}s")
                self.sleep(delay)
        raise AssertionError("unreachable")
