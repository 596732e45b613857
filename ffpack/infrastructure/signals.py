import logging
import signal
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

CANCEL_SIGNALS = ("SIGINT", "SIGTERM")


def install_cancel_handler(on_cancel: Callable[[Optional[int]], object]) -> Callable[[], None]:
    """Routes SIGINT/SIGTERM to `on_cancel(signum)`.

    The handler does nothing else: `on_cancel` must only flip state that is
    safe to touch from a signal context (no printing, no event publishing).
    Must be called from the main thread. Returns a function restoring the
    previous handlers. Raises ValueError/OSError when a handler cannot be set.
    """
    previous: Dict[int, object] = {}

    def _handler(signum, frame):
        on_cancel(signum)

    def restore():
        for signum, old in previous.items():
            try:
                signal.signal(signum, old)
            except (ValueError, OSError) as e:
                logger.warning(f"Failed to restore handler for signal {signum}: {e}")

    for name in CANCEL_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            previous[signum] = signal.signal(signum, _handler)
        except (ValueError, OSError):
            restore()
            raise

    return restore
