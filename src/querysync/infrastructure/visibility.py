"""In-process visibility signal."""

import logging
from collections.abc import Callable

from querysync.core.interfaces.visibility import VisibilityListener

logger = logging.getLogger(__name__)


class ManualVisibility:
    """Visibility signal toggled by the host application.

    The UI shell calls ``set_visible`` from its focus/blur handling.
    """

    def __init__(self, visible: bool = True) -> None:
        self._visible = visible
        self._listeners: list[VisibilityListener] = []

    def is_visible(self) -> bool:
        return self._visible

    def set_visible(self, visible: bool) -> None:
        """Update visibility and notify listeners if it changed."""
        if visible == self._visible:
            return
        self._visible = visible
        logger.debug("Visibility changed: %s", "foreground" if visible else "background")
        for listener in list(self._listeners):
            listener(visible)

    def add_listener(self, listener: VisibilityListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove
