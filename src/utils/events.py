# minimal observer used by the stores in place of ad-hoc events
import inspect
from typing import Any, Callable, Generic, List, TypeVar

from utils.logger import get_logger

_logger = get_logger(__name__)

M = TypeVar("M")

Unsubscribe = Callable[[], None]


class EventEmitter(Generic[M]):
    """
    Delivers messages of one type to subscribed listeners, in subscription order.

    Listeners may be plain functions or coroutine functions; coroutine
    listeners are awaited before emit() returns. A listener that raises is
    logged and skipped so the remaining listeners still see the message.
    """

    def __init__(self) -> None:
        self._listeners: List[Callable[[M], Any]] = []

    def subscribe(self, listener: Callable[[M], Any]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    async def emit(self, message: M) -> None:
        # copy, listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                result = listener(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.exception(
                    f"Listener {getattr(listener, '__qualname__', listener)!r} failed "
                    f"handling {type(message).__name__}"
                )
