# notes_pipeline/background/signals.py
"""
Graceful shutdown signal handling for Windows and Unix.

SIGINT/SIGTERM set a shared cancellation event: no new chunks or API calls
are issued, in-flight items finish and their outcomes are checkpointed.
"""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def setup_signal_handlers(cancel_event: asyncio.Event) -> None:
    """
    Set up signal handlers that request a graceful stop.

    On Windows (ProactorEventLoop), add_signal_handler is not supported,
    so we fall back to signal.signal().

    Args:
        cancel_event: Event set when a shutdown signal arrives
    """
    loop = asyncio.get_running_loop()

    def _request_stop(sig_name: str) -> None:
        if cancel_event.is_set():
            logger.info(f"Received {sig_name} again; still finishing in-flight items")
            return
        logger.info(f"Received {sig_name}, finishing in-flight items before stopping...")
        cancel_event.set()

    def _signal_callback(sig_num, frame) -> None:
        """Fallback signal handler for Windows."""
        sig_name = signal.Signals(sig_num).name
        loop.call_soon_threadsafe(_request_stop, sig_name)

    try:
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, _request_stop, sig.name)
        logger.info("Signal handlers registered (loop-based)")

    except NotImplementedError:
        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, _signal_callback)
        logger.info("Signal handlers registered (fallback for Windows)")


def remove_signal_handlers() -> None:
    """Restore default SIGINT/SIGTERM handling."""
    loop = asyncio.get_running_loop()
    try:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
    except NotImplementedError:
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
