from collections import defaultdict
from typing import Callable, DefaultDict, List
import asyncio
import logging
logger = logging.getLogger(__name__)

# Events published by the upload scheduler
FILE_START = "file_start"
FILE_COMPLETE = "file_complete"
FILE_FAIL = "file_fail"
CREDENTIALS_RENEWED = "credentials_renewed"
FINISH = "finish"


class EventEmitter:
    """Dispatches upload events to registered listeners, sync or async."""

    def __init__(self):
        self._listeners: DefaultDict[str, List[Callable]] = defaultdict(list)

    def on(self, event_name: str, callback: Callable) -> None:
        self._listeners[event_name].append(callback)

    async def emit(self, event_name: str, *args) -> None:
        """Call every listener in registration order. Listener errors are logged, not raised."""
        for callback in list(self._listeners.get(event_name, ())):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {event_name} listener: {e}")
