"""
Progress notification channel

Long running operations report progress to a ``ProgressListener``. Listeners
are observers only: a failing listener is logged and never alters the
operation that notified it.
"""
from typing import Any, Optional
from logger import get_logger

logger = get_logger(__name__)


class ProgressListener:
    """Receives named progress events. The default implementation ignores them."""

    def on_event(self, event: str, *args: Any) -> None:
        pass


class LoggingListener(ProgressListener):
    """Writes every progress event to the log"""

    def __init__(self, level: str = "info"):
        self._log = getattr(logger, level)

    def on_event(self, event: str, *args: Any) -> None:
        if args:
            self._log(f"{event}: {', '.join(str(arg) for arg in args)}")
        else:
            self._log(event)


def emit(listener: Optional[ProgressListener], event: str, *args: Any) -> None:
    """Notify ``listener`` of ``event`` without letting it interfere"""
    if listener is None:
        return
    try:
        listener.on_event(event, *args)
    except Exception as e:
        logger.warning(f"Progress listener failed on '{event}': {e}")
