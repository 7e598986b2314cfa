"""
Conduit - Graceful Shutdown

Drains a live service when the process is asked to terminate:

    IDLE -> ARMED -> DRAINING -> CLOSED
                  \\-> FORCE_KILLED   (watchdog fired before CLOSED)

Arming installs SIGTERM/SIGINT handlers on the running loop. The first
trigger starts the drain and a watchdog; later triggers return the same drain
task. The drain waits for in-flight requests, closes the listener, logs the
shutdown and deregisters from discovery.
"""
from __future__ import annotations

import asyncio
import os
import signal
import sys
from enum import Enum
from typing import Any, Callable, List, Optional

from core.async_utils import maybe_await
from observability.logging import get_logger
from observability.tracing import create_span

logger = get_logger(__name__)

DEFAULT_DRAIN_DELAY = 1.0
DEFAULT_FORCE_EXIT_TIMEOUT = 30.0
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    DRAINING = "draining"
    CLOSED = "closed"
    FORCE_KILLED = "force_killed"


class ShutdownCoordinator:
    """
    One-shot drain of a running service.

    Args:
        close_listener: stops accepting connections; may be async
        deregister: removes the instance from discovery and returns its result
        log: ``log(type, message)`` sink, usually ``ServiceLifecycle.log``
        drain_delay: seconds given to in-flight requests before closing
        force_exit_timeout: seconds before the watchdog calls ``force_exit``
        force_exit: called with exit code 0 when the drain overruns
    """

    def __init__(
        self,
        close_listener: Callable[[], Any],
        deregister: Callable[[], Any],
        log: Callable[[str, Any], None],
        drain_delay: float = DEFAULT_DRAIN_DELAY,
        force_exit_timeout: float = DEFAULT_FORCE_EXIT_TIMEOUT,
        force_exit: Callable[[int], Any] = os._exit,
    ):
        self._close_listener = close_listener
        self._deregister = deregister
        self._log = log
        self.drain_delay = drain_delay
        self.force_exit_timeout = force_exit_timeout
        self._force_exit = force_exit

        self._state = ShutdownState.IDLE
        self._triggered = False
        self._drain_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._signals: List[signal.Signals] = []
        self._result: Any = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def armed(self) -> bool:
        return self._state == ShutdownState.ARMED

    @property
    def triggered(self) -> bool:
        return self._triggered

    @property
    def result(self) -> Any:
        return self._result

    def arm(self, install_signal_handlers: bool = True) -> None:
        """Mark the listener as live and optionally hook OS termination signals."""
        if self._state != ShutdownState.IDLE:
            return
        self._loop = asyncio.get_running_loop()
        self._state = ShutdownState.ARMED

        if install_signal_handlers and sys.platform != "win32":
            for sig in SHUTDOWN_SIGNALS:
                try:
                    self._loop.add_signal_handler(sig, self._on_signal, sig)
                except (NotImplementedError, RuntimeError, ValueError) as e:
                    logger.warning("Signal handler not installed", signal=sig.name, error=str(e))
                    continue
                self._signals.append(sig)

        logger.debug("Shutdown coordinator armed", signals=[sig.name for sig in self._signals])

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Termination signal received", signal=sig.name)
        self.trigger()

    def trigger(self) -> asyncio.Task:
        """Start draining. Every call after the first returns the same task."""
        if self._triggered and self._drain_task is not None:
            return self._drain_task

        self._triggered = True
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._state = ShutdownState.DRAINING

        self._watchdog = loop.call_later(self.force_exit_timeout, self._on_watchdog)
        self._drain_task = loop.create_task(self._drain())
        self._drain_task.add_done_callback(self._report)
        return self._drain_task

    async def drain(self) -> Any:
        """Trigger if needed and wait for the drain to finish."""
        return await self.trigger()

    async def _drain(self) -> Any:
        with create_span("lifecycle.shutdown", attributes={"drain.delay": self.drain_delay}):
            await asyncio.sleep(self.drain_delay)
            await maybe_await(self._close_listener())
            self._log("error", "Service is shutting down.")
            self._result = await maybe_await(self._deregister())

        self._state = ShutdownState.CLOSED
        self._cancel_watchdog()
        self._remove_signal_handlers()
        return self._result

    def _report(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Shutdown drain failed", error=str(error), error_type=type(error).__name__)

    def _on_watchdog(self) -> None:
        self._watchdog = None
        if self._state == ShutdownState.CLOSED:
            return
        self._state = ShutdownState.FORCE_KILLED
        logger.error(
            "Shutdown did not complete in time, forcing exit",
            timeout=self.force_exit_timeout,
        )
        self._force_exit(0)

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in self._signals:
            self._loop.remove_signal_handler(sig)
        self._signals.clear()
