"""
Shutdown Coordination

Translates SIGTERM/SIGINT (ECS task stop, docker stop, Ctrl+C) into a
single cancellation token that the consumer checks between iterations.

GRACEFUL SHUTDOWN STEPS:
1. Signal arrives → token is set (once; repeats are only logged)
2. Consumer finishes its in-flight iteration, then stops
3. main() wakes from wait_for_termination() and joins the worker
4. Owned resources (the database connection) are released
5. Process exits with code 0

The coordinator never interrupts an iteration. A message that is being
persisted when the signal arrives is still persisted and deleted.
"""

import logging
import signal
import threading
from typing import Any, Dict, Iterable, Optional

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class CancellationToken:
    """Cooperative cancellation flag shared by the coordinator and the worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; True if cancelled."""
        return self._event.wait(timeout)


class ShutdownCoordinator:
    """
    Owns the process-wide cancellation token.

    Attributes:
        token: Cancellation token handed to the consumer
        reason: Why shutdown was requested (signal name or caller reason)
    """

    def __init__(self, token: Optional[CancellationToken] = None):
        self.token = token or CancellationToken()
        self.reason: Optional[str] = None
        self.logger = logging.getLogger(__name__)
        # Re-entrant: a second signal can run its handler inside the first
        self._lock = threading.RLock()
        self._requested = False
        self._previous_handlers: Dict[int, Any] = {}

    # ==========================================================================
    # SIGNAL HANDLERS
    # ==========================================================================

    def install(self, signals: Iterable[int] = DEFAULT_SIGNALS) -> None:
        """
        Register shutdown handlers. Must run on the main thread.

        The handlers only set the token, so they are safe to run between
        any two bytecodes of the main thread.
        """
        for signum in signals:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

        self.logger.info(
            "Signal handlers registered",
            extra={"signals": [signal.Signals(s).name for s in self._previous_handlers]},
        )

    def uninstall(self) -> None:
        """Restore the handlers that were active before install()."""
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame) -> None:
        self.request_shutdown(signal.Signals(signum).name)

    # ==========================================================================
    # SHUTDOWN
    # ==========================================================================

    def request_shutdown(self, reason: str) -> bool:
        """
        Set the cancellation token.

        Args:
            reason: Signal name or short description, for the logs

        Returns:
            True for the request that started shutdown, False for repeats
        """
        with self._lock:
            if self._requested or self.token.cancelled:
                self.logger.info(
                    "Shutdown already in progress",
                    extra={"reason": reason, "initial_reason": self.reason},
                )
                return False
            self._requested = True
            self.reason = reason
            self.token.cancel()

        self.logger.info("Shutdown requested, draining", extra={"reason": reason})
        return True

    def wait_for_termination(self, timeout: Optional[float] = None) -> bool:
        """
        Block until shutdown is requested.

        Returns:
            True if shutdown was requested, False on timeout
        """
        return self.token.wait(timeout)

    def release(self, *resources: Any) -> None:
        """
        Close owned resources. Errors are logged and never block exit.
        """
        for resource in resources:
            try:
                resource.close()
            except Exception:
                self.logger.error(
                    "Error during shutdown",
                    exc_info=True,
                    extra={"resource": type(resource).__name__},
                )
