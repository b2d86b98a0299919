"""
Fixed-delay backoff policy.

Used for both of the worker's retry loops:
- connecting to the store at startup (retry every 5s, forever)
- the polling loop after a failed iteration (wait 5s, continue)

``max_attempts`` exists so tests can bound a loop that is unbounded in
production; ``delay_seconds=0`` makes a test run without sleeping.
"""

import itertools
from dataclasses import dataclass
from typing import Iterator, Optional

from src.worker.shutdown import CancellationToken


@dataclass(frozen=True)
class BackoffPolicy:
    delay_seconds: float = 5.0
    max_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def attempts(self) -> Iterator[int]:
        """Attempt numbers starting at 1; endless when max_attempts is None."""
        if self.max_attempts is None:
            return itertools.count(1)
        return iter(range(1, self.max_attempts + 1))

    def wait(self, token: CancellationToken) -> bool:
        """
        Sleep for the delay, waking early on cancellation.

        Returns:
            True if cancellation arrived before or during the wait
        """
        if self.delay_seconds == 0:
            return token.cancelled
        return token.wait(self.delay_seconds)
