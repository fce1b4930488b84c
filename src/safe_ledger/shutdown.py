"""Signal-driven cancellation for CLI sync runs.

The first SIGINT/SIGTERM sets a cancel event that the sync orchestrator
watches; the in-flight request is abandoned and the current Safe ends in
``error``. A second signal exits immediately.

Usage:
    ```python
    async with GracefulShutdown() as shutdown:
        report = await sync.run(org_id, 50, cancel_event=shutdown.cancel_event)
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

# Signals to trap for graceful shutdown
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class GracefulShutdown:
    """Turns shutdown signals into a cancel event.

    Cleanup callbacks (sync or async) run when the context exits, whether
    or not a signal arrived.
    """

    def __init__(self) -> None:
        self._cancel_event: asyncio.Event | None = None
        self._shutdown_requested = False
        self._original_handlers: dict[signal.Signals, Any] = {}
        self._cleanup_callbacks: list[Callable[[], Any]] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def cancel_event(self) -> asyncio.Event:
        """Event set once shutdown is requested; pass it to sync runs."""
        if self._cancel_event is None:
            self._cancel_event = asyncio.Event()
        return self._cancel_event

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def register_cleanup(self, callback: Callable[[], Any]) -> None:
        """Register a callback to run when the context exits.

        Args:
            callback: A callable (sync or async).
        """
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Request cancellation from application code."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested programmatically")
            self.cancel_event.set()

    def install_signal_handlers(self) -> None:
        """Trap SIGTERM and SIGINT (only SIGINT is usable on Windows)."""
        self._loop = asyncio.get_running_loop()
        _ = self.cancel_event

        if sys.platform == "win32":
            for sig in SHUTDOWN_SIGNALS:
                try:
                    self._original_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
                except (ValueError, OSError) as e:
                    logger.warning("Could not install handler for %s: %s", sig.name, e)
        else:
            for sig in SHUTDOWN_SIGNALS:
                try:
                    self._loop.add_signal_handler(sig, self._handle_signal, sig)
                except (ValueError, OSError, RuntimeError) as e:
                    logger.warning("Could not install handler for %s: %s", sig.name, e)

        logger.debug("Signal handlers installed")

    def remove_signal_handlers(self) -> None:
        """Remove installed signal handlers and restore originals."""
        if sys.platform == "win32":
            for sig, original in self._original_handlers.items():
                with suppress(ValueError, OSError):
                    signal.signal(sig, original)
            self._original_handlers.clear()
        elif self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                with suppress(ValueError, OSError, RuntimeError):
                    self._loop.remove_signal_handler(sig)

        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)
        self._shutdown_requested = True
        logger.info("Received %s - cancelling sync...", sig.name)
        self.cancel_event.set()

    def _handle_signal_sync(self, sig: int, _frame: FrameType | None) -> None:
        self._handle_signal(signal.Signals(sig))

    async def run_cleanup_callbacks(self) -> None:
        """Run all registered cleanup callbacks, logging failures."""
        for callback in self._cleanup_callbacks:
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Cleanup callback failed: %s", e)

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
