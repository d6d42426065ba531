from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

Listener = Callable[[T], None]


class Observable(Generic[T]):
    """
    Value holder with a subscriber list.

    Subscribers receive the current value on subscribe and every value passed
    to `set` afterwards. A failing subscriber is logged and does not stop the
    remaining subscribers from being notified.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._listeners: list[Listener[T]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("observable listener failed")

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._value)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe
