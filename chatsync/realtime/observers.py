"""Observer registry for realtime notifications."""
import logging
from collections import defaultdict
from enum import Enum
from typing import Callable, DefaultDict, List, Union

from .schemas import Notification

logger = logging.getLogger(__name__)

ANY = "*"

Observer = Callable[[Notification], None]


def _key(kind: Union[str, Enum]) -> str:
    return kind.value if isinstance(kind, Enum) else str(kind)


class Observers:
    """Callbacks keyed by notification kind; ``"*"`` receives everything.

    A failing observer is logged and skipped so one broken UI callback does
    not starve the others.
    """

    def __init__(self) -> None:
        self._callbacks: DefaultDict[str, List[Observer]] = defaultdict(list)

    def on(self, kind: Union[str, Enum], callback: Observer) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        key = _key(kind)
        self._callbacks[key].append(callback)
        return lambda: self.off(key, callback)

    def off(self, kind: Union[str, Enum], callback: Observer) -> None:
        callbacks = self._callbacks.get(_key(kind), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, kind: Union[str, Enum], data=None) -> Notification:
        notification = Notification(kind=_key(kind), data=data)
        for callback in self._callbacks.get(notification.kind, []) + self._callbacks.get(ANY, []):
            try:
                callback(notification)
            except Exception:  # pylint: disable=broad-except
                logger.exception(f"Observer for {notification.kind} failed")
        return notification
