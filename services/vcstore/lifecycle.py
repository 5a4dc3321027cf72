"""Process lifecycle: shutdown signal handling and shutdown handler registration.

A single LifecycleManager is created by the entrypoint and passed to whatever
needs to run on shutdown. Registration state lives on the manager.
"""

import asyncio
import signal
import threading
from collections.abc import Awaitable, Callable

from vcstore.logging_config import get_logger

logger = get_logger(__name__)

ShutdownHandler = Callable[[], Awaitable[object]]


class LifecycleManager:
    """Owns the shutdown event and the registered shutdown handlers."""

    def __init__(self, handler_timeout: float = 30) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, ShutdownHandler] = {}
        self._handler_timeout = handler_timeout
        self._shutdown = asyncio.Event()
        self._ran = False

    @property
    def registered(self) -> list[str]:
        with self._lock:
            return list(self._handlers)

    def register_once(self, name: str, handler: ShutdownHandler) -> bool:
        """Register a shutdown handler under ``name``.

        Returns False, leaving the first handler in place, if ``name`` is
        already registered.
        """
        with self._lock:
            if name in self._handlers:
                logger.warning("Shutdown handler already registered, skipping", handler=name)
                return False
            self._handlers[name] = handler
        logger.info("Registered shutdown handler", handler=name)
        return True

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Turn SIGTERM/SIGINT into a shutdown request."""
        loop = loop or asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

    def request_shutdown(self) -> None:
        self._shutdown.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown.wait()

    async def run_shutdown(self) -> None:
        """Run every registered handler once, each under its own timeout.

        Failures are logged; shutdown always proceeds.
        """
        with self._lock:
            if self._ran:
                return
            self._ran = True
            handlers = list(self._handlers.items())

        for name, handler in handlers:
            logger.info("Running shutdown handler", handler=name)
            try:
                async with asyncio.timeout(self._handler_timeout):
                    await handler()
            except TimeoutError:
                logger.error(
                    "Shutdown handler timed out", handler=name, timeout=self._handler_timeout
                )
            except Exception as e:
                logger.error("Shutdown handler failed", handler=name, error=str(e))
            else:
                logger.info("Shutdown handler complete", handler=name)
