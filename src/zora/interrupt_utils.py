"""Keyboard interrupt handling for worker threads.

A KeyboardInterrupt raised inside a worker thread never reaches the main
thread on its own. Workers call handle_keyboard_interrupt_properly() so the
main thread is interrupted and can cancel the rest of the build.
"""

import _thread
import logging

logger = logging.getLogger(__name__)


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Forward a KeyboardInterrupt to the main thread and re-raise it.

    Args:
        ke: The interrupt caught in the current thread

    Raises:
        KeyboardInterrupt: Always re-raised after notifying the main thread
    """
    logger.debug("KeyboardInterrupt in worker thread, interrupting main thread")
    _thread.interrupt_main()
    raise ke
