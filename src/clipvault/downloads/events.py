from typing import Callable, Generic, TypeVar

from clipvault.log_config import logger

T = TypeVar("T")


class EventStream(Generic[T]):
    """
    Synchronous listener list, modelled on browser extension event objects.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Callable[[T], None]] = []

    def add_listener(self, listener: Callable[[T], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[T], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def has_listener(self, listener: Callable[[T], None]) -> bool:
        return listener in self._listeners

    def emit(self, event: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed", extra={"stream": self.name})

    def __len__(self) -> int:
        return len(self._listeners)
