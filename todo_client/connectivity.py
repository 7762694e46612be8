"""Online/offline signal shared by the gateway, the store and the controller."""

import logging
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class Connectivity:
    """Stands in for ``navigator.onLine`` plus the window online/offline events.

    Listeners receive the new flag and fire only when it actually changes.
    """

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._listeners: Dict[int, Callable[[bool], None]] = {}
        self._next_id = 0

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info('connectivity changed: %s', 'online' if online else 'offline')
        for listener in list(self._listeners.values()):
            try:
                listener(online)
            except Exception:
                logger.exception('connectivity listener failed')

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe
