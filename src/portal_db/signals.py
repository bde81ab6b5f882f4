"""
Graceful shutdown of the connection pool on process termination signals.
"""

import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable, List, Optional

from portal_db.database import shutdown_pool

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGUSR2")

ShutdownCallable = Callable[[], Awaitable[None]]


async def _shutdown_and_exit(label: str, shutdown: ShutdownCallable, exit_process: bool) -> None:
    try:
        await shutdown()
    except Exception as e:
        logger.error(f"Error during pool shutdown after {label}: {e}", exc_info=True)
    if exit_process:
        sys.exit(0)


def _make_signal_handler(label: str, shutdown: ShutdownCallable, exit_process: bool) -> Callable[[], None]:
    """
    Factory that returns a loop signal handler which closes the pool and
    exits cleanly.
    """
    def handler() -> None:
        logger.info("Received %s, closing connection pool...", label)
        asyncio.ensure_future(_shutdown_and_exit(label, shutdown, exit_process))
    return handler


def register_signal_handlers(
    shutdown: ShutdownCallable = shutdown_pool,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    exit_process: bool = True,
) -> List[str]:
    """
    Install SIGINT/SIGTERM/SIGUSR2 handlers on the event loop.

    Args:
        shutdown: Coroutine function closing the pool
        loop: Event loop (defaults to the running loop)
        exit_process: Exit with code 0 once shutdown completes

    Returns:
        Names of the signals that were installed
    """
    loop = loop or asyncio.get_running_loop()
    installed = []

    for name in SHUTDOWN_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _make_signal_handler(name, shutdown, exit_process))
            installed.append(name)
        except (NotImplementedError, RuntimeError) as e:
            logger.warning(f"Cannot install {name} handler on this platform: {e}")

    logger.debug(f"Registered pool shutdown handlers: {installed}")
    return installed


def remove_signal_handlers(loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    loop = loop or asyncio.get_running_loop()
    for name in SHUTDOWN_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is not None:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
